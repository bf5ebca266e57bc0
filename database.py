"""
MongoDB access for the storefront.

Collections: "user", "product", "order" and "revoked_token". Routes receive
the database handle through the `get_db` dependency.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient

import config

logger = logging.getLogger(__name__)

client = None
db = None

if config.DATABASE_URL:
    client = MongoClient(config.DATABASE_URL, tz_aware=True)
    db = client[config.DATABASE_NAME]


def get_db():
    if db is None:
        raise RuntimeError("Database is not configured, set DATABASE_URL")
    return db


def ensure_indexes(database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["product"].create_index([("name", ASCENDING)], unique=True)
    database["order"].create_index([("user", ASCENDING), ("createdAt", ASCENDING)])
    # revoked tokens disappear once the token itself would have expired
    database["revoked_token"].create_index([("tokenHash", ASCENDING)], unique=True)
    database["revoked_token"].create_index([("expiresAt", ASCENDING)], expireAfterSeconds=0)
    logger.info("Indexes ensured on %s", database.name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id from a path or body; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    doc = {**data, "createdAt": now, "updatedAt": now}
    result = database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(value: Any) -> Any:
    """Make a stored document JSON friendly: `_id` becomes `id`, ObjectIds and datetimes become strings."""
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = serialize_doc(v)
            else:
                out[k] = serialize_doc(v)
        return out
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value
