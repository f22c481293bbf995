import logging
import re
from typing import Any, Dict, List, Optional

import pymongo
from fastapi import Depends

from database import create_document, get_db, get_documents, parse_object_id, utcnow
from errors import NotFound
from schemas import Product, ProductUpdate

logger = logging.getLogger(__name__)


class Catalog:
    def __init__(self, db):
        self.db = db

    @property
    def products(self):
        return self.db["product"]

    def search(self, category: Optional[str] = None, search: Optional[str] = None,
               in_stock: Optional[bool] = None) -> List[Dict[str, Any]]:
        filt: Dict[str, Any] = {}
        if category:
            filt["category"] = category
        if search:
            pattern = re.escape(search)
            filt["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]
        if in_stock is not None:
            filt["inStock"] = in_stock
        return get_documents(self.db, "product", filt,
                             sort=[("createdAt", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)])

    def get(self, product_id) -> Dict[str, Any]:
        oid = parse_object_id(product_id, NotFound, "Product not found")
        product = self.products.find_one({"_id": oid})
        if product is None:
            raise NotFound("Product not found")
        return product

    def find(self, product_id) -> Optional[Dict[str, Any]]:
        """Live lookup used at checkout; unknown or malformed ids yield None."""
        try:
            oid = parse_object_id(product_id)
        except NotFound:
            return None
        return self.products.find_one({"_id": oid})

    def create(self, data: Product) -> Dict[str, Any]:
        product_id = create_document(self.db, "product", data)
        logger.info("Created product %s (%s)", product_id, data.name)
        return self.products.find_one({"_id": product_id})

    def update(self, product_id, data: ProductUpdate) -> Dict[str, Any]:
        oid = parse_object_id(product_id, NotFound, "Product not found")
        update = data.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
        update["updatedAt"] = utcnow()
        res = self.products.update_one({"_id": oid}, {"$set": update})
        if res.matched_count == 0:
            raise NotFound("Product not found")
        return self.products.find_one({"_id": oid})

    def delete(self, product_id) -> None:
        oid = parse_object_id(product_id, NotFound, "Product not found")
        res = self.products.delete_one({"_id": oid})
        if res.deleted_count == 0:
            raise NotFound("Product not found")
        logger.info("Deleted product %s", oid)


def get_catalog(db=Depends(get_db)) -> Catalog:
    return Catalog(db)
