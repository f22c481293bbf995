"""
MongoDB access helpers.

The client is opened lazily from Settings; routes receive the database through
the ``get_db`` dependency so tests can swap in an in-memory one.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, Union

import pymongo
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

from config import get_settings
from errors import AppError, NotFound

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_db():
    global _client
    settings = get_settings()
    if not settings.database_url or not settings.database_name:
        logger.error("Database not available. Check DATABASE_URL and DATABASE_NAME.")
        raise AppError()
    if _client is None:
        logger.info("Connecting to MongoDB database %s", settings.database_name)
        _client = MongoClient(settings.database_url)
    return _client[settings.database_name]


def ensure_indexes(db) -> None:
    db["user"].create_index("email", unique=True)
    db["address"].create_index([("user", pymongo.ASCENDING), ("createdAt", pymongo.DESCENDING)])
    db["order"].create_index([("user", pymongo.ASCENDING), ("createdAt", pymongo.DESCENDING)])
    db["order"].create_index([("status", pymongo.ASCENDING), ("createdAt", pymongo.DESCENDING)])


def create_document(db, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> ObjectId:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True, exclude_none=True)
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now
    result = db[collection_name].insert_one(data_dict)
    return result.inserted_id


def get_documents(db, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort=None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: Any, error: Type[AppError] = NotFound, message: Optional[str] = None) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise error(message)


def serialize_doc(doc):
    if doc is None:
        return doc
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return as_utc(doc).isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = serialize_doc(v)
    return out
