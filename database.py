"""
Database helpers

MongoDB access through pymongo. Collections:
- "user"
- "product" (reviews embedded)
- "order"
- "forum" (comments, likes and dislikes embedded)

Every document carries a "version" counter used by guarded_update for
optimistic read-modify-write on a single aggregate.
"""
import os
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Tuple

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError

from errors import AlreadyExists, Conflict, NotFound, Unavailable

logger = structlog.get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def ensure_indexes(database):
    """Unique keys the stores rely on. Safe to call repeatedly."""
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["product"].create_index([("slug", ASCENDING)], unique=True)


def get_db():
    if db is None:
        raise Unavailable("Database not configured")
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def object_id(value: str, what: str = "Document") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} Not Found")


def new_id() -> str:
    """Id for documents embedded in an aggregate (reviews, comments)."""
    return str(ObjectId())


def create_document(database, collection_name: str, data: dict, exists_message: str = "Document already exists") -> str:
    stamp = now_utc()
    doc = {**data, "created_at": stamp, "updated_at": stamp, "version": 0}
    try:
        result = database[collection_name].insert_one(doc)
    except DuplicateKeyError:
        raise AlreadyExists(exists_message)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_out(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("version", None)
    return d


def get_or_404(database, collection_name: str, doc_id: str, what: str) -> dict:
    doc = database[collection_name].find_one({"_id": object_id(doc_id, what)})
    if not doc:
        raise NotFound(f"{what} Not Found")
    return doc


def guarded_update(
    database,
    collection_name: str,
    doc_id: str,
    mutate: Callable[[dict], Any],
    retries: int = 5,
    what: str = "Document",
) -> Tuple[dict, Any]:
    """Apply mutate(doc) and write it back only if nobody else did first.

    mutate edits the document in place and may raise a ServiceError to
    abort without writing. On a lost race the document is re-read and
    mutate runs again, up to `retries` times, then Conflict is raised.
    Returns the stored document and whatever mutate returned.
    """
    collection = database[collection_name]
    oid = object_id(doc_id, what)
    for attempt in range(1, retries + 1):
        doc = collection.find_one({"_id": oid})
        if not doc:
            raise NotFound(f"{what} Not Found")
        if "version" in doc:
            version = doc["version"]
            version_filter = {"version": version}
        else:
            version = 0
            version_filter = {"version": {"$exists": False}}

        result = mutate(doc)

        doc["version"] = version + 1
        doc["updated_at"] = now_utc()
        try:
            replaced = collection.replace_one({"_id": oid, **version_filter}, doc)
        except DuplicateKeyError:
            raise AlreadyExists(f"{what} already exists")
        if replaced.matched_count == 1:
            return doc, result
        logger.info("update_conflict", collection=collection_name, id=doc_id, attempt=attempt)

    logger.warning("update_conflict_exhausted", collection=collection_name, id=doc_id, retries=retries)
    raise Conflict(f"{what} was modified concurrently, please retry")
