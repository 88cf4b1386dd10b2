"""
Database helpers

MongoDB connection and small collection helpers shared by the routes.
Collection names are the lowercase model names ("product", "cart", ...).
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS)
    db = client[DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise ConnectionFailure("Database is not configured (DATABASE_URL not set)")
    return db


def get_optional_db() -> Optional[Database]:
    """Database handle for read paths that can serve without the store."""
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: str, label: str = "ID") -> ObjectId:
    if not ObjectId.is_valid(id_str or ""):
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
    return ObjectId(id_str)


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
    return doc


def create_document(database: Database, collection_name: str, data: Any) -> str:
    """Insert a model or dict, stamping created_at/updated_at. Returns the new id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict.setdefault("updated_at", stamp)
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None, newest_first: bool = False) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if newest_first:
        cursor = cursor.sort([("created_at", -1), ("_id", -1)])
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    database["product"].create_index("slug", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["user"].create_index("uid", unique=True)
    database["user"].create_index("email", unique=True, sparse=True)
    database["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["order"].create_index("user_id")
