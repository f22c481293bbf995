import logging
import math
import re
from datetime import datetime, time
from typing import Any, Dict, List, Optional

import pymongo
from fastapi import Depends
from pymongo import ReturnDocument

from catalog import Catalog, get_catalog
from database import get_db, parse_object_id, utcnow
from errors import Conflict, NotFound
from schemas import ProfileUpdate, Role

logger = logging.getLogger(__name__)

NO_OTP = {"otp": 0}


class UserDirectory:
    def __init__(self, db, catalog: Catalog):
        self.db = db
        self.catalog = catalog

    @property
    def users(self):
        return self.db["user"]

    def update_profile(self, user_id, data: ProfileUpdate) -> Dict[str, Any]:
        update = data.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
        if "dateOfBirth" in update:
            # BSON has no date-only type
            update["dateOfBirth"] = datetime.combine(update["dateOfBirth"], time.min)
        update["updatedAt"] = utcnow()
        return self.users.find_one_and_update({"_id": user_id}, {"$set": update}, NO_OTP,
                                              return_document=ReturnDocument.AFTER)

    def favorites(self, user_id) -> List[Dict[str, Any]]:
        user = self.users.find_one({"_id": user_id}, {"favoriteItems": 1}) or {}
        ids = user.get("favoriteItems", [])
        products = {p["_id"]: p for p in self.db["product"].find({"_id": {"$in": ids}})}
        return [products[i] for i in ids if i in products]

    def add_favorite(self, user_id, product_id) -> None:
        product = self.catalog.get(product_id)
        res = self.users.update_one(
            {"_id": user_id, "favoriteItems": {"$ne": product["_id"]}},
            {"$push": {"favoriteItems": product["_id"]}},
        )
        if res.modified_count == 0:
            raise Conflict("Product already in favorites")

    def remove_favorite(self, user_id, product_id) -> None:
        oid = parse_object_id(product_id, NotFound, "Product not found")
        self.users.update_one({"_id": user_id}, {"$pull": {"favoriteItems": oid}})

    def list_all(self, search: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"email": {"$regex": pattern, "$options": "i"}},
            ]
        total = self.users.count_documents(query)
        cursor = (self.users.find(query, NO_OTP)
                  .sort([("createdAt", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)])
                  .skip((page - 1) * limit)
                  .limit(limit))
        return {
            "users": list(cursor),
            "pagination": {
                "current": page,
                "total": math.ceil(total / limit),
                "totalUsers": total,
            },
        }

    def set_role(self, user_id, role: Role) -> Dict[str, Any]:
        oid = parse_object_id(user_id, NotFound, "User not found")
        user = self.users.find_one_and_update({"_id": oid}, {"$set": {"role": role, "updatedAt": utcnow()}},
                                              NO_OTP, return_document=ReturnDocument.AFTER)
        if user is None:
            raise NotFound("User not found")
        logger.info("User %s role set to %s", oid, role)
        return user


def get_user_directory(db=Depends(get_db), catalog: Catalog = Depends(get_catalog)) -> UserDirectory:
    return UserDirectory(db, catalog)
