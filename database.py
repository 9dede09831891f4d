"""
MongoDB access

One client per process; collections are looked up by name on the database
returned from get_db(), which route handlers receive through Depends so tests
can swap in an in-memory database.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import get_settings
from errors import InvalidArgument

logger = logging.getLogger(__name__)

USERS = "users"
PRODUCTS = "products"
CARTS = "carts"
ORDERS = "orders"

_settings = get_settings()

client = MongoClient(
    _settings.DATABASE_URL,
    serverSelectionTimeoutMS=_settings.DB_SERVER_SELECTION_TIMEOUT_MS,
    socketTimeoutMS=_settings.DB_SOCKET_TIMEOUT_MS,
    connectTimeoutMS=_settings.DB_SERVER_SELECTION_TIMEOUT_MS,
)
db = client[_settings.DATABASE_NAME]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database):
    """Create the uniqueness guarantees the application relies on."""
    database[USERS].create_index([("email", ASCENDING)], unique=True)
    database[CARTS].create_index([("user_id", ASCENDING)], unique=True)
    database[ORDERS].create_index([("user_id", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def parse_object_id(value: Optional[str], label: str = "ID") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidArgument(f"Invalid {label}")


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    # Convert ObjectId in nested fields too (cart items, order snapshots)
    return {k: _serialize_value(v) for k, v in doc.items()}


def serialize_docs(docs) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]
