"""
Document store adapter for LoanLink

Wraps a MongoDB client. One Store is constructed at startup, injected into
each service and closed at shutdown. Collections: "users", "loans",
"applications".
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from errors import DependencyError, ValidationError

logger = logging.getLogger(__name__)

USERS = "users"
LOANS = "loans"
APPLICATIONS = "applications"

# ObjectIds grow with insertion, so sorting on _id gives insertion order.
INSERTION_ORDER = [("_id", 1)]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: str) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid id: {value!r}")
    return ObjectId(value)


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Render a stored document for API output: _id becomes a string "id"."""
    if doc is None:
        return None
    out = {k: v for k, v in doc.items() if k != "_id"}
    if "_id" in doc:
        out["id"] = str(doc["_id"])
    return out


class Store:
    def __init__(self, client: Optional[MongoClient] = None, url: Optional[str] = None,
                 name: Optional[str] = None):
        self.client = client if client is not None else MongoClient(url or config.DATABASE_URL)
        self.db = self.client[name or config.DATABASE_NAME]
        with self._guard("create_index", USERS):
            self.db[USERS].create_index("email", unique=True)
        logger.info("Store opened (database=%s)", self.db.name)

    @contextmanager
    def _guard(self, op: str, collection: str):
        try:
            yield
        except DuplicateKeyError:
            raise
        except PyMongoError as e:
            logger.error("Store %s on %s failed: %s", op, collection, e)
            raise DependencyError(f"Database error during {op}") from e

    def find(self, collection: str, filter_dict: Optional[dict] = None, skip: int = 0,
             limit: int = 0, sort: Optional[List[Tuple[str, int]]] = None) -> List[dict]:
        with self._guard("find", collection):
            cursor = self.db[collection].find(filter_dict or {})
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def find_one(self, collection: str, filter_dict: dict) -> Optional[dict]:
        with self._guard("find_one", collection):
            return self.db[collection].find_one(filter_dict)

    def create_document(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert a document stamped with createdAt/updatedAt and return its id."""
        doc = dict(data)
        stamp = now_utc()
        doc.setdefault("createdAt", stamp)
        doc["updatedAt"] = stamp
        with self._guard("insert_one", collection):
            result = self.db[collection].insert_one(doc)
        return str(result.inserted_id)

    def update_one(self, collection: str, filter_dict: dict, patch: dict, upsert: bool = False):
        with self._guard("update_one", collection):
            return self.db[collection].update_one(filter_dict, patch, upsert=upsert)

    def delete_one(self, collection: str, filter_dict: dict) -> int:
        with self._guard("delete_one", collection):
            return self.db[collection].delete_one(filter_dict).deleted_count

    def count(self, collection: str, filter_dict: Optional[dict] = None) -> int:
        with self._guard("count", collection):
            return self.db[collection].count_documents(filter_dict or {})

    def estimated_count(self, collection: str) -> int:
        with self._guard("count", collection):
            return self.db[collection].estimated_document_count()

    def collection_names(self) -> List[str]:
        with self._guard("list_collection_names", "*"):
            return self.db.list_collection_names()

    def close(self) -> None:
        self.client.close()
        logger.info("Store closed")
