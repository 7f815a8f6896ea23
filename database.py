"""
MongoDB access helpers.

The client is created lazily from the configured DATABASE_URL so that
importing the application never opens a connection. Services receive the
Database object explicitly; get_db() is the FastAPI dependency that hands
it out and that tests override.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import get_settings
from errors import NotFound

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        settings = get_settings()
        _client = MongoClient(settings.database_url)
    return _client


def get_db() -> Database:
    return get_client()[get_settings().database_name]


def ensure_indexes(db: Database) -> None:
    """Create the unique indexes the lending rules rely on."""
    db["patrons"].create_index([("email", ASCENDING)], unique=True)
    db["patrons"].create_index([("phone_number", ASCENDING)], unique=True, sparse=True)
    db["staff"].create_index([("email", ASCENDING)], unique=True)
    db["staff"].create_index([("phone_number", ASCENDING)], unique=True, sparse=True)
    db["book_copies"].create_index([("barcode", ASCENDING)], unique=True)
    db["book_copies"].create_index([("book_id", ASCENDING), ("status", ASCENDING)])
    db["loans"].create_index([("account_id", ASCENDING), ("status", ASCENDING)])
    db["loans"].create_index([("copy_id", ASCENDING)])
    db["loans"].create_index([("status", ASCENDING), ("due_date", ASCENDING)])
    db["fines"].create_index([("loan_id", ASCENDING)], unique=True)
    db["fines"].create_index([("account_id", ASCENDING), ("status", ASCENDING)])
    db["payments"].create_index([("transaction_id", ASCENDING)], unique=True, sparse=True)
    db["payments"].create_index([("fine_id", ASCENDING)])
    logger.info("Indexes ensured on database %s", db.name)


def to_object_id(value: str, kind: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound.for_id(kind, value)


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_document(data: Any) -> Dict[str, Any]:
    """Serialize a model for storage: enums by value, dates as ISO strings, unset optionals dropped."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", exclude_none=True)
    return {k: v for k, v in dict(data).items() if v is not None}


def create_document(db: Database, collection: str, data: Any) -> str:
    doc = to_document(data)
    doc["created_at"] = now()
    doc["updated_at"] = now()
    result = db[collection].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, skip: int = 0, sort: Optional[list] = None) -> list:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(int(limit))
    return list(cursor)


def from_document(model: Type[BaseModel], doc: dict) -> BaseModel:
    """Build a response model (one with an ``id`` field) from a stored document."""
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return model.model_validate(data)
