"""
MongoDB access helpers.

`db` is the module-level database handle, or None when DATABASE_URL /
DATABASE_NAME are not configured. Tests swap in an in-memory database by
assigning `database.db`.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import ValidationError

logger = logging.getLogger("marketplace.database")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL, tz_aware=True)
    db = client[DATABASE_NAME]


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    target = database if database is not None else db
    if target is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = target[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, database=None) -> List[dict]:
    target = database if database is not None else db
    if target is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = target[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("token", ASCENDING)])
    database["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["order"].create_index([("created_at", DESCENDING), ("_id", DESCENDING)])
    database["product"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    database["feedback"].create_index([("seller_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def to_object_id(value: str, label: str = "id") -> ObjectId:
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Copy a document with `_id` replaced by a string `id`."""
    if doc is None:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d
