"""
MongoDB access for the EcoWaste API.

The client is created once at import time from DATABASE_URL. When the URL is
missing `db` stays None and every request that needs the store fails with a
PersistenceError instead of serving made-up data.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ecowaste")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

db = None
if DATABASE_URL:
    client = MongoClient(
        DATABASE_URL,
        serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS,
        connectTimeoutMS=DATABASE_TIMEOUT_MS,
        socketTimeoutMS=DATABASE_TIMEOUT_MS,
    )
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL is not set; database routes will answer 503")


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise PersistenceError("Database not configured")
    return db


def optional_db():
    """Like `get_db`, but None when no database is configured."""
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id format")


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc["id"] = str(doc.get("_id"))
    doc.pop("_id", None)
    return doc


def create_document(database, collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id."""
    stamp = now()
    doc = dict(data)
    doc.setdefault("createdAt", stamp)
    doc.setdefault("updatedAt", stamp)
    try:
        result = database[collection_name].insert_one(doc)
    except PyMongoError as e:
        raise PersistenceError(f"Failed to write {collection_name}: {e}")
    return str(result.inserted_id)


def get_documents(
    database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    skip: int = 0,
    sort_field: str = "createdAt",
) -> List[dict]:
    """Newest-first documents from a collection, serialized for JSON."""
    try:
        cursor = database[collection_name].find(filter_dict or {}).sort(sort_field, -1)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [serialize(d) for d in cursor]
    except PyMongoError as e:
        raise PersistenceError(f"Failed to read {collection_name}: {e}")


def count_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
    try:
        return database[collection_name].count_documents(filter_dict or {})
    except PyMongoError as e:
        raise PersistenceError(f"Failed to count {collection_name}: {e}")
