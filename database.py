"""
MongoDB access for the Smart Campus API.

A single MongoClient is created at import time when DATABASE_URL is set. Route
handlers receive the database through the `get_db` dependency so tests can
swap in an in-memory stand-in.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL:
    client = MongoClient(config.DATABASE_URL, maxPoolSize=10, serverSelectionTimeoutMS=5000)
    db = client[config.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def collection_name(model_cls) -> str:
    return model_cls.__name__.lower()


def utcnow() -> datetime:
    # stored naive, in UTC, the way pymongo hands them back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse a path/token id; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(database: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a document stamped with created_at/updated_at and return it with its _id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(
    database: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[tuple]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return {k: _serialize_value(v) for k, v in d.items()}


def serialize_list(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def ensure_indexes(database: Database) -> None:
    """Create the unique and sort indexes the handlers rely on."""
    database["user"].create_index("email", unique=True)
    database["user"].create_index("external_id", unique=True)
    database["user"].create_index("role")
    database["student"].create_index("user", unique=True)
    database["teacher"].create_index("user", unique=True)
    database["club"].create_index("name", unique=True)
    database["club"].create_index("category")
    database["event"].create_index("date")
    database["announcement"].create_index([("pinned", DESCENDING), ("posted_at", DESCENDING)])
    database["feedback"].create_index([("status", ASCENDING), ("submitted_at", DESCENDING)])
    database["lostitem"].create_index([("status", ASCENDING), ("date", DESCENDING)])
    database["resource"].create_index([("department", ASCENDING), ("semester", ASCENDING)])
    logger.info("MongoDB indexes ensured")


def ping(database: Optional[Database]) -> str:
    if database is None:
        return "not configured"
    try:
        database.client.admin.command("ping")
        return "connected"
    except Exception as e:
        logger.warning(f"MongoDB ping failed: {e}")
        return f"error: {str(e)[:80]}"
