"""
MongoDB access.

The client is created once from DATABASE_URL / DATABASE_NAME. When either is
missing, ``db`` stays None and data endpoints report the database as not
configured.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import get_settings
from errors import DatabaseUnavailable, ValidationError

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

_settings = get_settings()
if _settings.database_url and _settings.database_name:
    _client = MongoClient(_settings.database_url)
    db = _client[_settings.database_name]
    logger.info("MongoDB client created for database %s", _settings.database_name)


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise DatabaseUnavailable("Database not configured")
    return db


def to_object_id(value: Union[str, ObjectId], label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}: {value}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection: str, data: Union[BaseModel, Dict[str, Any]], session=None,
                    database: Optional[Database] = None) -> ObjectId:
    """Insert a document, stamping created_at. Returns the new ObjectId."""
    target = database if database is not None else get_db()
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    doc.setdefault("created_at", utcnow())
    result = target[collection].insert_one(doc, session=session)
    return result.inserted_id


def get_documents(collection: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, database: Optional[Database] = None) -> List[dict]:
    """Documents from a collection, newest first."""
    target = database if database is not None else get_db()
    cursor = target[collection].find(filter_dict or {}).sort([("created_at", -1), ("_id", -1)])
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def doc_to_dict(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: ObjectIds become strings, _id becomes id."""
    if isinstance(doc, list):
        return [doc_to_dict(v) for v in doc]
    if not isinstance(doc, dict):
        return str(doc) if isinstance(doc, ObjectId) else doc
    out = {}
    for k, v in doc.items():
        if isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, (dict, list)):
            out[k] = doc_to_dict(v)
        else:
            out[k] = v
    if "_id" in out:
        out["id"] = out.pop("_id")
    return out
