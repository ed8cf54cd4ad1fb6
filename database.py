"""
Database helpers

MongoDB connection and small document helpers shared by the API handlers.
Collection names are the lowercase of the schema class name (CartLine -> "cartline").
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import ServiceUnavailable

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]


def get_db():
    if db is None:
        raise ServiceUnavailable("Database not configured: set DATABASE_URL and DATABASE_NAME")
    return db


def use_database(database) -> None:
    """Swap the active database handle (used by tests and scripts)."""
    global db
    db = database


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id from a path or body; None when it is not a valid ObjectId."""
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    for k, v in list(out.items()):
        if isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
    return out


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with timestamps and return its id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None,
                  sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes() -> None:
    """Create the unique indexes the cart, order and return flows rely on."""
    database = get_db()
    database["cartline"].create_index(
        [("user_id", ASCENDING), ("product_id", ASCENDING), ("size", ASCENDING), ("color", ASCENDING)],
        unique=True,
    )
    database["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["address"].create_index([("user_id", ASCENDING), ("is_default", DESCENDING)])
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index("checkout_key", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["returnrequest"].create_index("open_target", unique=True, sparse=True)
    database["returnrequest"].create_index("order_sync_pending")
    database["profile"].create_index("user_id", unique=True)
    database["product"].create_index([("in_stock", ASCENDING), ("is_featured", ASCENDING)])
    logger.info("Indexes ensured on %s", getattr(database, "name", "database"))
