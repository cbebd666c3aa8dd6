"""
Database Helper Functions

MongoDB access for the ordering service. Every collection is reached through
the module-level ``db`` handle so the handle can be swapped (tests patch it
with an in-memory database).
"""

from contextlib import contextmanager
from pymongo import MongoClient, ASCENDING, DESCENDING
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime, timezone
import logging
import os
from dotenv import load_dotenv
from typing import Union, Optional, Dict, Any, List
from pydantic import BaseModel

from errors import AppError, NotFound

# Load environment variables from .env file
load_dotenv()

log = logging.getLogger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def _ensure_db():
    if db is None:
        raise AppError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def collection(name: str):
    _ensure_db()
    return db[name]


def to_object_id(value: str) -> ObjectId:
    """Parse a string id; an id that cannot exist is reported as not found."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"Invalid id: {value}")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def transactions_enabled() -> bool:
    return os.getenv("MONGO_TRANSACTIONS", "0").lower() in {"1", "true", "yes", "on"}


@contextmanager
def transaction():
    """Yield a session bound to a multi-document transaction, or None.

    Standalone servers cannot run transactions, so this is opt-in through
    MONGO_TRANSACTIONS. Callers must pass the yielded value as ``session=``.
    """
    if _client is None or not transactions_enabled():
        yield None
        return
    with _client.start_session() as session:
        with session.start_transaction():
            yield session


def ensure_indexes():
    _ensure_db()
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)
    db["dish"].create_index([("restaurant_id", ASCENDING)])
    db["restaurant"].create_index([("owner_id", ASCENDING)])
    db["order"].create_index([("order_code", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index([("restaurant_id", ASCENDING), ("order_status", ASCENDING)])
    db["order"].create_index([("stats_applied", ASCENDING)])
    db["customorder"].create_index([("restaurant_id", ASCENDING), ("created_at", DESCENDING)])
    log.info("Indexes ensured")


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    _ensure_db()
    payload = _to_dict(data)
    now = now_utc()
    payload['created_at'] = now
    payload['updated_at'] = now
    result = db[collection_name].insert_one(payload, session=session)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None,
                  projection: Optional[dict] = None) -> List[dict]:
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def get_document_by_id(collection_name: str, _id: str, projection: Optional[dict] = None) -> Optional[dict]:
    _ensure_db()
    try:
        oid = ObjectId(_id)
    except (InvalidId, TypeError):
        return None
    doc = db[collection_name].find_one({"_id": oid}, projection)
    return serialize_doc(doc) if doc else None


def update_document(collection_name: str, _id: str, update_data: Dict[str, Any]) -> bool:
    _ensure_db()
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = now_utc()
    result = db[collection_name].update_one({"_id": to_object_id(_id)}, update)
    return result.matched_count > 0


def delete_document(collection_name: str, _id: str) -> bool:
    _ensure_db()
    result = db[collection_name].delete_one({"_id": to_object_id(_id)})
    return result.deleted_count > 0


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d
