"""
Record store backed by MongoDB.

One collection per record kind. Ids are integers handed out by a per-kind
counter document so they increase monotonically. Calendar dates are stored as
YYYY-MM-DD strings, which keeps range queries on calendar dates.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import Settings
from errors import RecordNotFoundError, UpstreamFetchError, ValidationError

logger = logging.getLogger(__name__)

# kind -> (collection, date field, sort direction for get_all)
KINDS = {
    "expense": ("expense", "date", DESCENDING),
    "bill": ("bill", "due_date", ASCENDING),
    "subscription": ("subscription", "next_payment", ASCENDING),
}
COUNTERS = "counters"


def serialize(doc: Dict[str, Any]):
    if not doc:
        return doc
    d = dict(doc)
    d.pop("_id", None)
    for k, v in list(d.items()):
        if isinstance(v, (datetime, date)):
            d[k] = v.isoformat()
    return d


def to_document(data: Union[BaseModel, Dict[str, Any]], exclude_unset: bool = False) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        d = data.model_dump(exclude_unset=exclude_unset)
    else:
        d = dict(data)
    # bson has no calendar date type
    for k, v in list(d.items()):
        if isinstance(v, date) and not isinstance(v, datetime):
            d[k] = v.isoformat()
    return d


class RecordStore:
    def __init__(self, db: Database):
        self.db = db

    def _collection(self, kind: str):
        if kind not in KINDS:
            raise ValidationError(f"Unknown record kind: {kind!r}")
        return self.db[KINDS[kind][0]]

    def _run(self, action: str, kind: str, fn):
        try:
            return fn()
        except PyMongoError as e:
            logger.exception("Store %s on %s failed", action, kind)
            raise UpstreamFetchError(f"Could not {action} {kind}: {e}") from e

    def _next_id(self, kind: str) -> int:
        counter = self.db[COUNTERS].find_one_and_update(
            {"_id": kind},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    def get_all(self, kind: str, user_id: str) -> List[Dict[str, Any]]:
        coll = self._collection(kind)
        _, field, direction = KINDS[kind]
        query = lambda: list(coll.find({"user_id": user_id}).sort([(field, direction), ("id", ASCENDING)]))
        return [serialize(d) for d in self._run("read", kind, query)]

    def get_active(self, kind: str, user_id: str) -> List[Dict[str, Any]]:
        coll = self._collection(kind)
        query = lambda: list(coll.find({"user_id": user_id, "is_active": True}).sort("id", ASCENDING))
        return [serialize(d) for d in self._run("read", kind, query)]

    def get_range(self, kind: str, user_id: str, start: date, end: date) -> List[Dict[str, Any]]:
        """Records whose date field lies in [start, end], both inclusive."""
        coll = self._collection(kind)
        _, field, direction = KINDS[kind]
        query = {"user_id": user_id, field: {"$gte": start.isoformat(), "$lte": end.isoformat()}}
        docs = self._run("read", kind, lambda: list(coll.find(query).sort([(field, direction), ("id", ASCENDING)])))
        return [serialize(d) for d in docs]

    def get_recent(self, kind: str, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        coll = self._collection(kind)
        query = lambda: list(coll.find({"user_id": user_id}).sort("created_at", DESCENDING).limit(limit))
        return [serialize(d) for d in self._run("read", kind, query)]

    def get_by_id(self, kind: str, user_id: str, record_id: int) -> Dict[str, Any]:
        coll = self._collection(kind)
        doc = self._run("read", kind, lambda: coll.find_one({"id": record_id, "user_id": user_id}))
        if doc is None:
            raise RecordNotFoundError(kind, record_id)
        return serialize(doc)

    def create(self, kind: str, user_id: str, payload: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
        coll = self._collection(kind)
        data = to_document(payload)

        def insert():
            data["id"] = self._next_id(kind)
            data["user_id"] = user_id
            data["created_at"] = datetime.now(timezone.utc)
            coll.insert_one(data)
            return data

        doc = self._run("create", kind, insert)
        logger.info("Created %s %s for user %s", kind, doc["id"], user_id)
        return serialize(doc)

    def update(
        self, kind: str, user_id: str, record_id: int, changes: Union[BaseModel, Dict[str, Any]]
    ) -> Dict[str, Any]:
        coll = self._collection(kind)
        data = to_document(changes, exclude_unset=True)
        for key in ("id", "user_id", "created_at", "_id"):
            data.pop(key, None)
        if not data:
            return self.get_by_id(kind, user_id, record_id)

        doc = self._run("update", kind, lambda: coll.find_one_and_update(
            {"id": record_id, "user_id": user_id},
            {"$set": data},
            return_document=ReturnDocument.AFTER,
        ))
        if doc is None:
            raise RecordNotFoundError(kind, record_id)
        logger.info("Updated %s %s (%s)", kind, record_id, ", ".join(sorted(data)))
        return serialize(doc)

    def toggle_active(self, kind: str, user_id: str, record_id: int) -> Dict[str, Any]:
        """Flip is_active in a single server-side update."""
        coll = self._collection(kind)
        doc = self._run("update", kind, lambda: coll.find_one_and_update(
            {"id": record_id, "user_id": user_id},
            [{"$set": {"is_active": {"$not": "$is_active"}}}],
            return_document=ReturnDocument.AFTER,
        ))
        if doc is None:
            raise RecordNotFoundError(kind, record_id)
        logger.info("Set %s %s active=%s", kind, record_id, doc.get("is_active"))
        return serialize(doc)

    def delete(self, kind: str, user_id: str, record_id: int) -> None:
        coll = self._collection(kind)
        result = self._run("delete", kind, lambda: coll.delete_one({"id": record_id, "user_id": user_id}))
        if result.deleted_count == 0:
            raise RecordNotFoundError(kind, record_id)
        logger.info("Deleted %s %s", kind, record_id)

    def list_collection_names(self) -> List[str]:
        return self._run("list", "collections", self.db.list_collection_names)


def create_store(settings: Settings, client: Optional[MongoClient] = None) -> RecordStore:
    client = client or MongoClient(settings.database_url)
    return RecordStore(client[settings.database_name])
