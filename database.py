"""
MongoDB access helpers

`db` is None until DATABASE_URL and DATABASE_NAME are configured. Callers go
through `collection()` so that the handle can be swapped (tests use mongomock).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

from config import Config

logger = logging.getLogger(__name__)

client = None
db = None

if Config.DATABASE_URL and Config.DATABASE_NAME:
    client = MongoClient(Config.DATABASE_URL)
    db = client[Config.DATABASE_NAME]
else:
    logger.warning("DATABASE_URL/DATABASE_NAME not set; database is unavailable")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form Mongo hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def collection(name: str):
    if db is None:
        raise RuntimeError("Database is not configured")
    return db[name]


def to_object_id(value: Union[str, ObjectId]) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        raise ValueError(f"Invalid id: {value}")
    return ObjectId(value)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as str."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = collection(collection_name).insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = collection(collection_name).find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(collection_name: str, doc_id) -> Optional[dict]:
    return collection(collection_name).find_one({"_id": to_object_id(doc_id)})


def update_document(collection_name: str, doc_id, fields: Dict[str, Any]) -> Optional[dict]:
    """Set fields on one document and return it re-fetched (None if missing)."""
    oid = to_object_id(doc_id)
    fields = dict(fields)
    fields["updated_at"] = utcnow()
    result = collection(collection_name).update_one({"_id": oid}, {"$set": fields})
    if result.matched_count == 0:
        return None
    return collection(collection_name).find_one({"_id": oid})


def delete_document(collection_name: str, doc_id) -> bool:
    result = collection(collection_name).delete_one({"_id": to_object_id(doc_id)})
    return result.deleted_count > 0


def ensure_indexes() -> None:
    """Unique indexes backing the email, plate and one-location-per-user rules."""
    collection("user").create_index("email", unique=True)
    collection("vehicle").create_index(
        "license_plate",
        unique=True,
        partialFilterExpression={"license_plate": {"$type": "string"}},
    )
    collection("user_location").create_index("user_id", unique=True)
