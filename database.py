"""
MongoDB access for the storefront.

``db`` is the module-level handle used by every service. It is set by
``init_db`` at application startup (or by the test suite with an in-memory
client) and stays ``None`` until then.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

import settings
from errors import ConflictError, InternalError, ValidationError

logger = structlog.get_logger(__name__)

client: Optional[MongoClient] = None
db = None


def init_db(mongo_client: Optional[MongoClient] = None, name: Optional[str] = None):
    """Connect to the store and ensure indexes. Raises on failure."""
    global client, db
    if mongo_client is None:
        if not settings.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set")
        mongo_client = MongoClient(settings.DATABASE_URL)
        mongo_client.admin.command("ping")
    client = mongo_client
    db = client[name or settings.DATABASE_NAME]
    ensure_indexes()
    logger.info("Database initialized", database=db.name)
    return db


def close_db() -> None:
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def ensure_indexes() -> None:
    db.user.create_index("email", unique=True)
    db.user.create_index("username", unique=True)
    db.product_size.create_index([("product_id", ASCENDING), ("size", ASCENDING)], unique=True)
    db.cart_item.create_index([("user_id", ASCENDING), ("product_id", ASCENDING), ("size", ASCENDING)], unique=True)
    db.order.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])


def get_db():
    if db is None:
        raise InternalError("Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(value: Union[str, ObjectId]) -> ObjectId:
    """Parse a public id, raising ValidationError for malformed input."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def normalize_id(value: Union[str, ObjectId]) -> str:
    """Canonical string form of an id, as stored in references."""
    return str(oid(value))


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Rename ``_id`` to ``id`` and stringify ObjectId references."""
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            doc[key] = str(value)
    return doc


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    doc = dict(data)
    doc.setdefault("created_at", now())
    doc.setdefault("updated_at", doc["created_at"])
    try:
        result = get_db()[collection_name].insert_one(doc)
    except DuplicateKeyError as e:
        logger.warning("Duplicate key on insert", collection=collection_name, error=str(e))
        raise ConflictError(f"Duplicate {collection_name}")
    except PyMongoError as e:
        logger.error("Insert failed", collection=collection_name, error=str(e))
        raise InternalError(f"Server error while creating {collection_name}")
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List] = None,
    skip: int = 0,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(collection_name: str, filter_dict: Dict[str, Any], page: int, limit: int, sort=None):
    """Return one page of documents plus the pagination block used in responses."""
    collection = get_db()[collection_name]
    total = collection.count_documents(filter_dict)
    docs = get_documents(
        collection_name,
        filter_dict,
        sort=sort or [("created_at", DESCENDING)],
        skip=(page - 1) * limit,
        limit=limit,
    )
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": -(-total // limit) if limit else 0,
    }
    return docs, pagination
