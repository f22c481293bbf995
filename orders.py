"""
Order placement and fulfilment.

Checkout re-prices every line against the live catalog and refuses the order
when the client's total drifts from the server's by more than a cent. Status
changes are admin-only and unconditional: any status may follow any other,
each change is appended to ``statusHistory``.
"""
import logging
import math
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pymongo
from fastapi import Depends
from pymongo import ReturnDocument

from catalog import Catalog, get_catalog
from database import create_document, get_db, parse_object_id, utcnow
from errors import AmountMismatch, Forbidden, NotFound, Unavailable, ValidationFailed
from schemas import (
    MilkOptions,
    NoOptions,
    Order,
    OrderCreate,
    OrderItem,
    OrderItemIn,
    OrderStatus,
    PaymentUpdate,
    StatusHistoryEntry,
)

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01
# binary float noise allowed on top of the one-cent tolerance
_FLOAT_SLACK = 1e-9
TAX_RATE = 0.05

NEWEST_FIRST = [("createdAt", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)]


def delivery_fee(subtotal: float) -> float:
    if subtotal < 500:
        return 50.0
    if subtotal < 1000:
        return 30.0
    return 0.0


def generate_order_number(now: datetime) -> str:
    return f"ORD{now:%Y%m%d}{secrets.randbelow(10000):04d}"


class OrderEngine:
    def __init__(self, db, catalog: Catalog):
        self.db = db
        self.catalog = catalog

    @property
    def orders(self):
        return self.db["order"]

    def price_items(self, items: List[OrderItemIn]) -> Tuple[List[OrderItem], float]:
        """Snapshot live prices for each line and return them with the running total."""
        lines: List[OrderItem] = []
        total = 0.0
        for index, item in enumerate(items):
            product = self.catalog.find(item.product)
            if product is None or not product.get("inStock", False):
                name = product.get("name") if product else "unknown"
                raise Unavailable(f"Product {name} is not available")

            if product.get("category") == "milk":
                options = MilkOptions(schedule=item.milk_schedule)
            elif item.milk_schedule is not None:
                raise ValidationFailed(errors=[{
                    "field": f"items.{index}.milkSchedule",
                    "message": "Delivery schedule only applies to milk products",
                }])
            else:
                options = NoOptions()

            price = float(product.get("price", 0))
            total += price * item.quantity
            lines.append(OrderItem(
                product=product["_id"],
                name=product.get("name", "Product"),
                price=round(price, 2),
                quantity=item.quantity,
                selected_quantity=item.selected_quantity,
                options=options,
            ))
        return lines, total

    def quote(self, items: List[OrderItemIn]) -> Dict[str, float]:
        _, subtotal = self.price_items(items)
        subtotal = round(subtotal, 2)
        tax = round(subtotal * TAX_RATE, 2)
        fee = delivery_fee(subtotal)
        return {
            "subtotal": subtotal,
            "tax": tax,
            "deliveryFee": fee,
            "estimatedTotal": round(subtotal + tax + fee, 2),
        }

    def create(self, user: Dict[str, Any], data: OrderCreate) -> Dict[str, Any]:
        lines, server_total = self.price_items(data.items)
        if abs(server_total - data.total_amount) > AMOUNT_TOLERANCE + _FLOAT_SLACK:
            logger.warning("Rejected order for user %s: claimed %.2f, computed %.2f",
                           user["_id"], data.total_amount, server_total)
            raise AmountMismatch()

        address_id = parse_object_id(data.shipping_address, NotFound, "Address not found")
        address = self.db["address"].find_one({"_id": address_id, "user": user["_id"]})
        if address is None:
            raise NotFound("Address not found")

        now = utcnow()
        order = Order(
            order_number=generate_order_number(now),
            user=user["_id"],
            items=lines,
            total_amount=round(server_total, 2),
            shipping_address=address["_id"],
            payment_method=data.payment_method,
            delivery_date=data.delivery_date,
            notes=data.notes,
            status_history=[StatusHistoryEntry(status="pending", timestamp=now, note="Order placed")],
        )
        order_id = create_document(self.db, "order", order)
        logger.info("Created order %s (%s) for user %s, total %.2f",
                    order_id, order.order_number, user["_id"], order.total_amount)
        return self.populate(self.orders.find_one({"_id": order_id}))

    def get(self, user: Dict[str, Any], order_id) -> Dict[str, Any]:
        order = self._find(order_id)
        if order["user"] != user["_id"] and user.get("role") != "admin":
            raise Forbidden()
        return self.populate(order)

    def list_mine(self, user_id) -> List[Dict[str, Any]]:
        return [self.populate(o) for o in self.orders.find({"user": user_id}).sort(NEWEST_FIRST)]

    def update_status(self, order_id, status: OrderStatus, admin: Optional[Dict[str, Any]] = None,
                      note: Optional[str] = None) -> Dict[str, Any]:
        oid = parse_object_id(order_id, NotFound, "Order not found")
        now = utcnow()
        entry = StatusHistoryEntry(
            status=status,
            timestamp=now,
            note=note,
            updated_by=admin["_id"] if admin else None,
        )
        order = self.orders.find_one_and_update(
            {"_id": oid},
            {"$set": {"status": status, "updatedAt": now},
             "$push": {"statusHistory": entry.model_dump(by_alias=True, exclude_none=True)}},
            return_document=ReturnDocument.AFTER,
        )
        if order is None:
            raise NotFound("Order not found")
        if status == "delivered" and order.get("actualDeliveryTime") is None:
            order = self.orders.find_one_and_update(
                {"_id": oid, "actualDeliveryTime": None},
                {"$set": {"actualDeliveryTime": now}},
                return_document=ReturnDocument.AFTER,
            ) or self.orders.find_one({"_id": oid})
        logger.info("Order %s moved to %s", oid, status)
        return self.populate(order)

    def update_payment(self, order_id, data: PaymentUpdate) -> Dict[str, Any]:
        oid = parse_object_id(order_id, NotFound, "Order not found")
        update = data.model_dump(by_alias=True, exclude_none=True)
        update["updatedAt"] = utcnow()
        order = self.orders.find_one_and_update({"_id": oid}, {"$set": update},
                                                return_document=ReturnDocument.AFTER)
        if order is None:
            raise NotFound("Order not found")
        logger.info("Order %s payment status is now %s", oid, data.payment_status)
        return self.populate(order)

    def list_all(self, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        total = self.orders.count_documents(query)
        cursor = self.orders.find(query).sort(NEWEST_FIRST).skip((page - 1) * limit).limit(limit)
        return {
            "orders": [self.populate(o, with_user=True) for o in cursor],
            "pagination": {
                "current": page,
                "total": math.ceil(total / limit),
                "totalOrders": total,
            },
        }

    def populate(self, order: Dict[str, Any], with_user: bool = False) -> Dict[str, Any]:
        order = dict(order)
        items = []
        for item in order.get("items", []):
            item = dict(item)
            product = self.db["product"].find_one({"_id": item["product"]})
            if product is not None:
                item["product"] = product
            items.append(item)
        order["items"] = items
        address = self.db["address"].find_one({"_id": order.get("shippingAddress")})
        if address is not None:
            order["shippingAddress"] = address
        if with_user:
            owner = self.db["user"].find_one({"_id": order["user"]}, {"name": 1, "email": 1})
            if owner is not None:
                order["user"] = owner
        return order

    def _find(self, order_id) -> Dict[str, Any]:
        oid = parse_object_id(order_id, NotFound, "Order not found")
        order = self.orders.find_one({"_id": oid})
        if order is None:
            raise NotFound("Order not found")
        return order


def get_order_engine(db=Depends(get_db), catalog: Catalog = Depends(get_catalog)) -> OrderEngine:
    return OrderEngine(db, catalog)
