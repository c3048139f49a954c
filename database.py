"""
Document store access.

Collections are schemaless bags of named fields. Every document handed to the
rest of the application is a plain dict whose ``_id`` has been replaced by a
string ``id``.
"""
from contextlib import contextmanager
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from bson import ObjectId
from pydantic import BaseModel, ConfigDict
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from config import DATABASE_NAME, DATABASE_URL
from errors import APIError, ConflictError, NotFoundError, StoreError, StorePermissionError
from logging_config import get_logger

logger = get_logger(__name__)

client: Optional[MongoClient] = None
db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]

# MongoDB "Unauthorized"
_UNAUTHORIZED = 13

_OPERATORS = {
    "==": "$eq",
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
}


Operator = Literal["==", "!=", "<", "<=", ">", ">="]


class Filter(BaseModel):
    """Equality or range predicate on a named field."""
    model_config = ConfigDict(frozen=True)

    field: str
    op: Operator
    value: Any


def where(field: str, op: str, value: Any) -> Filter:
    return Filter(field=field, op=op, value=value)


# ("date", "asc") / ("date", "desc")
OrderBy = Tuple[str, str]


class DocumentStore:
    """Keyed document store with filter/sort/limit queries."""

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def add(self, collection: str, document: Dict[str, Any]) -> str:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    def first(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
    ) -> Optional[Dict[str, Any]]:
        """Single-result query; an empty result is ``None``, not an error."""
        docs = self.query(collection, filters, order_by=order_by, limit=1)
        return docs[0] if docs else None


def _key(doc_id: str):
    return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id


def _normalise(raw: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(raw)
    doc["id"] = str(doc.pop("_id")) if doc.get("_id") is not None else None
    return doc


def _mongo_filter(filters: Sequence[Filter]) -> Dict[str, Any]:
    criteria: Dict[str, Dict[str, Any]] = {}
    for f in filters:
        field = "_id" if f.field == "id" else f.field
        value = _key(f.value) if field == "_id" and isinstance(f.value, str) else f.value
        criteria.setdefault(field, {})[_OPERATORS[f.op]] = value
    return criteria


@contextmanager
def _translate_errors(action: str, collection: str):
    try:
        yield
    except DuplicateKeyError as e:
        logger.warning(f"Duplicate key on {action} in '{collection}': {e}")
        raise ConflictError(f"A conflicting document already exists in '{collection}'")
    except OperationFailure as e:
        if e.code == _UNAUTHORIZED:
            logger.error(f"Permission denied on {action} in '{collection}': {e}")
            raise StorePermissionError()
        logger.error(f"Store failure on {action} in '{collection}': {e}")
        raise StoreError()
    except PyMongoError as e:
        logger.error(f"Store failure on {action} in '{collection}': {e}")
        raise StoreError()


class MongoDocumentStore(DocumentStore):
    def __init__(self, database=None):
        self._db = database

    def _collection(self, name: str):
        if self._db is None:
            raise APIError("Database not available", status_code=503)
        return self._db[name]

    def get(self, collection, doc_id):
        col = self._collection(collection)
        with _translate_errors("get", collection):
            raw = col.find_one({"_id": _key(doc_id)})
        return _normalise(raw) if raw else None

    def query(self, collection, filters=(), order_by=None, limit=None):
        col = self._collection(collection)
        with _translate_errors("query", collection):
            cursor = col.find(_mongo_filter(filters))
            if order_by:
                field, direction = order_by
                cursor = cursor.sort(field, DESCENDING if direction == "desc" else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return [_normalise(raw) for raw in cursor]

    def add(self, collection, document):
        col = self._collection(collection)
        data = {k: v for k, v in document.items() if k != "id"}
        if document.get("id"):
            data["_id"] = _key(document["id"])
        with _translate_errors("add", collection):
            result = col.insert_one(data)
        return str(result.inserted_id)

    def update(self, collection, doc_id, fields):
        col = self._collection(collection)
        data = {k: v for k, v in fields.items() if k != "id"}
        with _translate_errors("update", collection):
            result = col.update_one({"_id": _key(doc_id)}, {"$set": data})
        if result.matched_count == 0:
            raise NotFoundError(f"No document '{doc_id}' in '{collection}'")

    def delete(self, collection, doc_id):
        col = self._collection(collection)
        with _translate_errors("delete", collection):
            result = col.delete_one({"_id": _key(doc_id)})
        return result.deleted_count > 0

    def ensure_indexes(self) -> None:
        """One tactics document per match; role lookups by linked user id."""
        if self._db is None:
            return
        with _translate_errors("create_index", "tactics"):
            self._db["tactics"].create_index("matchId", unique=True)
            self._db["players"].create_index("userId")
            self._db["coaches"].create_index("userId")


_store = MongoDocumentStore(db)


def get_store() -> DocumentStore:
    return _store
