"""
MongoDB access

One client per process. Collections are named after the lowercased schema
class (User -> "user", Cluster -> "cluster", Contact -> "contact").
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import config

logger = logging.getLogger(__name__)

client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=True)
db = client[config.DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency; overridden in tests."""
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("username", ASCENDING)], unique=True)
    database["cluster"].create_index([("clusterId", ASCENDING)], unique=True)
    database["cluster"].create_index([("villas.id", ASCENDING)])
    database["contact"].create_index([("status", ASCENDING), ("createdAt", -1)])
    database["contact"].create_index([("email", ASCENDING)])
    logger.info("MongoDB indexes ensured on %s", database.name)


def create_document(database: Database, collection_name: str, data) -> dict:
    """Insert a schema instance (or plain dict) stamped with timestamps.

    Returns the stored document including its ``_id``.
    """
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort=None, skip: int = 0, limit: int = 0) -> list:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def close() -> None:
    client.close()
    logger.info("MongoDB connection closed")
