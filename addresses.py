"""
Per-user address book.

A user with at least one address always has exactly one default. Writes for
the same user are serialized in-process, and moving the default sets the new
one before clearing the others, so readers may briefly see two defaults but
never none.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List

import pymongo
from fastapi import Depends

from database import create_document, get_db, parse_object_id, utcnow
from errors import NotFound
from schemas import Address, AddressCreate, AddressUpdate

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("createdAt", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)]

# user id -> [lock, holders]; entries are dropped once nobody holds or waits
_locks: Dict[str, list] = {}
_locks_guard = threading.Lock()


@contextmanager
def user_lock(user_id):
    key = str(user_id)
    with _locks_guard:
        entry = _locks.setdefault(key, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _locks[key]


class AddressBook:
    def __init__(self, db):
        self.db = db

    @property
    def addresses(self):
        return self.db["address"]

    def list_for(self, user_id) -> List[Dict[str, Any]]:
        return list(self.addresses.find({"user": user_id}).sort([("isDefault", pymongo.DESCENDING)] + NEWEST_FIRST))

    def get(self, user_id, address_id) -> Dict[str, Any]:
        oid = parse_object_id(address_id, NotFound, "Address not found")
        address = self.addresses.find_one({"_id": oid, "user": user_id})
        if address is None:
            raise NotFound("Address not found")
        return address

    def add(self, user_id, data: AddressCreate) -> Dict[str, Any]:
        with user_lock(user_id):
            is_default = data.is_default or self.addresses.count_documents({"user": user_id}) == 0
            address = Address(**data.model_dump(), user=user_id)
            address.is_default = is_default
            address_id = create_document(self.db, "address", address)
            if is_default:
                self._clear_other_defaults(user_id, address_id)
            self.db["user"].update_one({"_id": user_id}, {"$push": {"addresses": address_id}})
        logger.info("Added address %s for user %s (default=%s)", address_id, user_id, is_default)
        return self.addresses.find_one({"_id": address_id})

    def update(self, user_id, address_id, data: AddressUpdate) -> Dict[str, Any]:
        with user_lock(user_id):
            current = self.get(user_id, address_id)
            fields = data.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
            wants_default = fields.pop("isDefault", None)
            if fields:
                fields["updatedAt"] = utcnow()
                self.addresses.update_one({"_id": current["_id"]}, {"$set": fields})
            if wants_default and not current.get("isDefault"):
                self._promote(user_id, current["_id"])
            # isDefault=false on the current default is ignored
        return self.addresses.find_one({"_id": current["_id"]})

    def remove(self, user_id, address_id) -> None:
        oid = parse_object_id(address_id, NotFound, "Address not found")
        with user_lock(user_id):
            removed = self.addresses.find_one_and_delete({"_id": oid, "user": user_id})
            if removed is None:
                raise NotFound("Address not found")
            self.db["user"].update_one({"_id": user_id}, {"$pull": {"addresses": oid}})
            if removed.get("isDefault"):
                successor = self.addresses.find_one({"user": user_id}, sort=NEWEST_FIRST)
                if successor is not None:
                    self.addresses.update_one({"_id": successor["_id"]},
                                              {"$set": {"isDefault": True, "updatedAt": utcnow()}})
                    logger.info("Promoted address %s to default for user %s", successor["_id"], user_id)

    def set_default(self, user_id, address_id) -> Dict[str, Any]:
        with user_lock(user_id):
            target = self.get(user_id, address_id)
            self._promote(user_id, target["_id"])
        return self.addresses.find_one({"_id": target["_id"]})

    def _promote(self, user_id, address_id) -> None:
        self.addresses.update_one({"_id": address_id}, {"$set": {"isDefault": True, "updatedAt": utcnow()}})
        self._clear_other_defaults(user_id, address_id)
        logger.info("Address %s is now the default for user %s", address_id, user_id)

    def _clear_other_defaults(self, user_id, address_id) -> None:
        self.addresses.update_many(
            {"user": user_id, "_id": {"$ne": address_id}, "isDefault": True},
            {"$set": {"isDefault": False, "updatedAt": utcnow()}},
        )


def get_address_book(db=Depends(get_db)) -> AddressBook:
    return AddressBook(db)
