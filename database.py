import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.database import Database

from errors import NotFound

logger = logging.getLogger(__name__)


def connect(url: Optional[str], name: str) -> Optional[Database]:
    """Open the MongoDB database, or return None when no URL is configured."""
    if not url:
        logger.warning("DATABASE_URL is not set, running without a database")
        return None
    client = MongoClient(url)
    db = client[name]
    ensure_indexes(db)
    return db


def ensure_indexes(db: Database) -> None:
    # signup checks the email first, the index settles concurrent signups
    db["user"].create_index("email", unique=True)


def to_object_id(value: Any, label: str = "document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"Could not find a {label} for the provided id.")


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, dict):
            doc[k] = serialize_doc(v)
        elif isinstance(v, list):
            doc[k] = [serialize_doc(i) if isinstance(i, dict) else str(i) if isinstance(i, ObjectId) else i for i in v]
    return doc
