"""
Database helpers for the Lead CRM backend.

Every collection is a plain MongoDB collection; documents are written as
dicts or pydantic models (see schemas.py). Writes notify registered change
listeners so triggers.py can react the way a change stream would.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
TRIGGER_MODE = os.getenv("TRIGGER_MODE", "inline")

db = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]

SECRET_FIELDS = ("password_hash",)

# listener(kind, collection, document_id, before, after)
_listeners: List[Callable[[str, str, str, Optional[dict], Optional[dict]], None]] = []


def add_listener(listener: Callable) -> None:
    if listener not in _listeners:
        _listeners.append(listener)


def _notify(kind: str, collection_name: str, doc_id: str, before: Optional[dict], after: Optional[dict]) -> None:
    if TRIGGER_MODE != "inline":
        return
    for listener in _listeners:
        listener(kind, collection_name, doc_id, before, after)


def now() -> datetime:
    return datetime.now(timezone.utc)


def utc_naive(value: datetime) -> datetime:
    """MongoDB hands datetimes back as naive UTC; query bounds must match."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_object_id(doc_id: Any) -> Optional[ObjectId]:
    if isinstance(doc_id, ObjectId):
        return doc_id
    try:
        return ObjectId(str(doc_id))
    except (InvalidId, TypeError):
        return None


def collection(name: str):
    if db is None:
        raise RuntimeError("Database not configured")
    return db[name]


def _as_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    doc = _as_dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc.setdefault("updated_at", stamp)
    result = collection(collection_name).insert_one(doc)
    doc_id = str(result.inserted_id)
    _notify("created", collection_name, doc_id, None, get_document(collection_name, doc_id))
    return doc_id


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[dict]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(collection_name: str, doc_id: Any) -> Optional[dict]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return collection(collection_name).find_one({"_id": oid})


def update_document(collection_name: str, doc_id: Any, changes: dict) -> Optional[Tuple[dict, dict]]:
    """Apply a $set and return the (before, after) snapshots, or None if missing."""
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    coll = collection(collection_name)
    before = coll.find_one({"_id": oid})
    if before is None:
        return None
    changes = dict(changes)
    changes.pop("_id", None)
    changes.pop("id", None)
    changes["updated_at"] = now()
    coll.update_one({"_id": oid}, {"$set": changes})
    after = coll.find_one({"_id": oid})
    _notify("updated", collection_name, str(oid), before, after)
    return before, after


def delete_document(collection_name: str, doc_id: Any) -> bool:
    oid = to_object_id(doc_id)
    if oid is None:
        return False
    return collection(collection_name).delete_one({"_id": oid}).deleted_count > 0


class InvalidCursor(ValueError):
    """Raised by paginate() when the cursor names no document in the collection."""


def paginate(
    collection_name: str,
    filter_dict: Optional[dict],
    sort_field: str,
    page_size: int = 100,
    cursor: Optional[str] = None,
) -> dict:
    """Newest-first page keyed on (sort_field, _id). cursor is the last id seen.

    Documents without a sort_field value sort after every dated one.
    """
    query = dict(filter_dict or {})
    if cursor:
        last = get_document(collection_name, cursor)
        if last is None:
            raise InvalidCursor(cursor)
        last_value = last.get(sort_field)
        after_last = [{sort_field: last_value, "_id": {"$lt": last["_id"]}}]
        if last_value is not None:
            after_last += [{sort_field: {"$lt": last_value}}, {sort_field: None}]
        query = {"$and": [query, {"$or": after_last}]}
    docs = get_documents(
        collection_name,
        query,
        limit=page_size,
        sort=[(sort_field, DESCENDING), ("_id", DESCENDING)],
    )
    next_cursor = str(docs[-1]["_id"]) if len(docs) == page_size else None
    return {"data": [serialize(d) for d in docs], "cursor": next_cursor}


def next_sequence(name: str) -> int:
    counter = collection("counters").find_one_and_update(
        {"_id": name},
        {"$inc": {"value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(counter["value"])


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Public copy of a document: string `id` instead of `_id`, no secrets."""
    if doc is None:
        return None
    data = {k: v for k, v in doc.items() if k not in SECRET_FIELDS}
    if "_id" in data:
        data["id"] = str(data.pop("_id"))
    return data


def ensure_indexes() -> None:
    if db is None:
        return
    db["users"].create_index([("email", ASCENDING)], unique=True)
    db["sessions"].create_index([("token", ASCENDING)], unique=True)
    db["leads"].create_index([("created_at", DESCENDING)])
    db["leads"].create_index([("assigned_to", ASCENDING)])
    db["attendance"].create_index([("punch_in_time", DESCENDING)])
    db["lead_notes"].create_index([("lead_id", ASCENDING), ("created_at", ASCENDING)])
    db["notifications"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Indexes ensured on %s", db.name)
