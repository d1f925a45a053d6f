"""
MongoDB access helpers.

`db` is the process-wide database handle; route handlers receive it through
the `get_db` dependency so tests can swap in another database.
"""
from datetime import datetime, timezone
from typing import Optional

from bson.objectid import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

from settings import settings

_client = MongoClient(settings.DATABASE_URL, tz_aware=True, connect=False)
db = _client[settings.DATABASE_NAME]


def get_db():
    return db


def to_object_id(id_str) -> Optional[ObjectId]:
    if isinstance(id_str, ObjectId):
        return id_str
    # ObjectId(None) would mint a fresh id
    if id_str is None:
        return None
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data, database=None) -> str:
    database = database if database is not None else db
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # convert datetimes
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc
