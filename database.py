"""
Database access

Thin persistence adapter over a MongoDB database. Collections are addressed
with slash paths ("medicineCategories/med_1/subCategories") which map onto
dotted MongoDB collection names ("medicineCategories.med_1.subCategories").

Documents are returned as plain dicts with "_id" renamed to "id".
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "medisow")


class DocumentExistsError(Exception):
    """A document with the requested id is already stored."""


class DocumentNotFoundError(Exception):
    """An update addressed a document that does not exist."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def as_aware(value: Optional[datetime]) -> datetime:
    """Sort key for stored timestamps: naive values are read as UTC, missing ones sort first."""
    if value is None:
        return _EPOCH
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def collection_name(path: str) -> str:
    return ".".join(part for part in path.split("/") if part)


def _id_filter(doc_id: str) -> dict:
    # records written by other clients may carry native ObjectId keys
    if ObjectId.is_valid(doc_id):
        return {"_id": {"$in": [doc_id, ObjectId(doc_id)]}}
    return {"_id": doc_id}


def to_record(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


class Store:
    """Collection/document CRUD with equality queries."""

    def __init__(self, db: Database):
        self.db = db

    def _collection(self, path: str):
        return self.db[collection_name(path)]

    def list_collection(self, path: str) -> List[dict]:
        return [to_record(d) for d in self._collection(path).find({})]

    def get_document(self, path: str, doc_id: str) -> Optional[dict]:
        return to_record(self._collection(path).find_one(_id_filter(doc_id)))

    def create_document(self, path: str, fields: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        data = dict(fields)
        data["_id"] = doc_id or str(ObjectId())
        try:
            self._collection(path).insert_one(data)
        except DuplicateKeyError as e:
            if doc_id is not None:
                raise DocumentExistsError(f"{path}/{doc_id} already exists") from e
            raise
        return data["_id"]

    def update_document(self, path: str, doc_id: str, patch: Dict[str, Any]) -> None:
        res = self._collection(path).update_one(_id_filter(doc_id), {"$set": patch})
        if res.matched_count == 0:
            raise DocumentNotFoundError(f"No document {doc_id} in {path}")

    def delete_document(self, path: str, doc_id: str) -> None:
        self._collection(path).delete_one(_id_filter(doc_id))

    def query_equals(self, path: str, field: str, value: Any) -> List[dict]:
        return self.query(path, {field: value})

    def query(self, path: str, filters: Dict[str, Any]) -> List[dict]:
        return [to_record(d) for d in self._collection(path).find(filters)]

    def exists(self, path: str, filters: Dict[str, Any]) -> bool:
        return self._collection(path).find_one(filters, {"_id": 1}) is not None

    def count(self, path: str) -> int:
        return self._collection(path).count_documents({})

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()


def connect(url: str = DATABASE_URL, name: str = DATABASE_NAME) -> Store:
    client = MongoClient(url, serverSelectionTimeoutMS=5000)
    logger.info("Connecting to database %s", name)
    return Store(client[name])


def ensure_indexes(store: Store) -> None:
    # voucher codes are unique when present; empty codes are allowed to repeat
    store.db["vouchers"].create_index(
        [("code", ASCENDING)],
        unique=True,
        partialFilterExpression={"code": {"$gt": ""}},
        name="voucher_code_unique",
    )
    for items in ("medicines", "prescriptions", "labReports"):
        store.db[items].create_index([("categoryId", ASCENDING)])
        store.db[items].create_index([("subCategoryId", ASCENDING)])
