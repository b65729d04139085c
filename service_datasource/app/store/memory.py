"""
In-process document store.

Implements the collection capabilities on plain dictionaries. Useful for
local development and tests; every read and write yields to the event loop
once so concurrency behaves like a networked store.
"""

import asyncio
import operator
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from shared.errors import StoreError
from shared.logging import get_logger
from ..codec.values import DocumentReference
from .base import DocumentSnapshot

_MISSING = object()


def _clone(value: Any) -> Any:
    """Copy containers; leaves (including tagged values) are immutable."""
    if isinstance(value, dict):
        return {key: _clone(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_clone(item) for item in value]
    return value


def _deep_merge(target: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(target)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = _clone(value)
    return merged


def _field_value(data: Dict[str, Any], field_path: str) -> Any:
    current: Any = data
    for part in field_path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _array_contains(left: Any, right: Any) -> bool:
    return isinstance(left, list) and right in left


def _in(left: Any, right: Any) -> bool:
    return left in right


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": _in,
    "array-contains": _array_contains,
}


class InMemoryQuery:
    """Chainable filter over an in-memory collection."""

    def __init__(
        self,
        collection: "InMemoryCollection",
        filters: Optional[List[Tuple[str, str, Any]]] = None,
        order: Optional[Tuple[str, bool]] = None,
        limit_to: Optional[int] = None,
    ):
        self.collection = collection
        self.filters = filters or []
        self.order = order
        self.limit_to = limit_to

    def where(self, field_path: str, op: str, value: Any) -> "InMemoryQuery":
        if op not in OPERATORS:
            raise ValueError(f"Unsupported query operator: {op}")
        return InMemoryQuery(self.collection, self.filters + [(field_path, op, value)], self.order, self.limit_to)

    def order_by(self, field_path: str, descending: bool = False) -> "InMemoryQuery":
        return InMemoryQuery(self.collection, self.filters, (field_path, descending), self.limit_to)

    def limit(self, count: int) -> "InMemoryQuery":
        return InMemoryQuery(self.collection, self.filters, self.order, count)

    def _matches(self, data: Dict[str, Any]) -> bool:
        for field_path, op, expected in self.filters:
            actual = _field_value(data, field_path)
            if actual is _MISSING:
                return False
            try:
                if not OPERATORS[op](actual, expected):
                    return False
            except TypeError:
                # Values of different kinds never compare equal or ordered
                return False
        return True

    async def get(self) -> List[DocumentSnapshot]:
        await self.collection._io("query")
        results = [
            DocumentSnapshot(doc_id, _clone(data))
            for doc_id, data in self.collection._documents.items()
            if self._matches(data)
        ]
        if self.order is not None:
            field_path, descending = self.order
            results = [r for r in results if _field_value(r.data, field_path) is not _MISSING]
            results.sort(key=lambda r: _field_value(r.data, field_path), reverse=descending)
        if self.limit_to is not None:
            results = results[:self.limit_to]
        return results


class InMemoryCollection:
    """A collection held in process memory."""

    def __init__(self, store: "InMemoryDocumentStore", path: str):
        self.store = store
        self.path = path
        self.id = path.rsplit("/", 1)[-1]
        self.logger = get_logger("datasource.store.memory")
        self._documents: Dict[str, Dict[str, Any]] = {}

        # Test hooks
        self.batch_get_calls: List[List[str]] = []
        self.get_calls: List[str] = []
        self.read_failure: Optional[Exception] = None

    async def _io(self, operation: str):
        await asyncio.sleep(0)
        if self.read_failure is not None and operation in ("get", "batch_get", "query"):
            self.logger.warning("Injected store failure", collection=self.path, operation=operation)
            raise self.read_failure

    def where(self, field_path: str, op: str, value: Any) -> InMemoryQuery:
        return InMemoryQuery(self).where(field_path, op, value)

    def order_by(self, field_path: str, descending: bool = False) -> InMemoryQuery:
        return InMemoryQuery(self).order_by(field_path, descending)

    def doc(self, doc_id: str) -> DocumentReference:
        return DocumentReference(f"{self.path}/{doc_id}", store=self.store)

    async def get(self, doc_id: str) -> DocumentSnapshot:
        self.get_calls.append(doc_id)
        await self._io("get")
        data = self._documents.get(doc_id)
        return DocumentSnapshot(doc_id, _clone(data) if data is not None else None)

    async def batch_get(self, doc_ids: Sequence[str]) -> List[DocumentSnapshot]:
        self.batch_get_calls.append(list(doc_ids))
        await self._io("batch_get")
        return [
            DocumentSnapshot(doc_id, _clone(self._documents[doc_id]) if doc_id in self._documents else None)
            for doc_id in doc_ids
        ]

    async def add(self, data: Dict[str, Any]) -> str:
        await self._io("add")
        doc_id = uuid.uuid4().hex[:20]
        self._documents[doc_id] = _clone(data)
        self.logger.debug("Document added", collection=self.path, doc_id=doc_id)
        return doc_id

    async def set(self, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        if not doc_id:
            raise StoreError("Document id must not be empty", details={"collection": self.path})
        await self._io("set")
        if merge and doc_id in self._documents:
            self._documents[doc_id] = _deep_merge(self._documents[doc_id], data)
        else:
            self._documents[doc_id] = _clone(data)

    async def delete(self, doc_id: str) -> None:
        await self._io("delete")
        self._documents.pop(doc_id, None)

    def __len__(self) -> int:
        return len(self._documents)


class InMemoryDocumentStore:
    """Root of an in-process document store."""

    def __init__(self):
        self._collections: Dict[str, InMemoryCollection] = {}

    def collection(self, path: str) -> InMemoryCollection:
        path = path.strip("/")
        if not path or len(path.split("/")) % 2 != 1:
            raise ValueError(f"Collection path must have an odd number of segments, got {path!r}")
        if path not in self._collections:
            self._collections[path] = InMemoryCollection(self, path)
        return self._collections[path]

    def document(self, path: str) -> DocumentReference:
        return DocumentReference(path.strip("/"), store=self)
