"""
Document store capabilities required by the data source.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

Document = Dict[str, Any]

# Fields derived from where a document lives rather than stored with it
LIBRARY_FIELDS = ("id", "collection")


@dataclass
class DocumentSnapshot:
    """A document as read from the store at one point in time."""
    id: str
    data: Optional[Dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None


@runtime_checkable
class DocumentQuery(Protocol):
    """Anything that can be executed into a list of snapshots."""

    async def get(self) -> List[DocumentSnapshot]:
        ...


@runtime_checkable
class DocumentCollection(Protocol):
    """A named collection of documents in a document store."""

    id: str
    path: str
    store: Any

    async def get(self, doc_id: str) -> DocumentSnapshot:
        ...

    async def batch_get(self, doc_ids: Sequence[str]) -> List[DocumentSnapshot]:
        ...

    async def add(self, data: Dict[str, Any]) -> str:
        ...

    async def set(self, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        ...

    async def delete(self, doc_id: str) -> None:
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Root handle of a document store."""

    def collection(self, path: str) -> DocumentCollection:
        ...

    def document(self, path: str) -> Any:
        ...


REQUIRED_ATTRIBUTES = ("id", "path", "store")
REQUIRED_COROUTINES = ("get", "batch_get", "add", "set", "delete")


@dataclass
class CollectionValidation:
    """Outcome of checking a collection handle."""
    valid: bool
    missing: List[str] = field(default_factory=list)

    def describe(self) -> str:
        if self.valid:
            return "collection handle is valid"
        return "collection handle is missing: " + ", ".join(self.missing)


def validate_collection(candidate: Any) -> CollectionValidation:
    """Check that ``candidate`` offers every capability the data source uses."""
    missing: List[str] = []
    for name in REQUIRED_ATTRIBUTES:
        value = getattr(candidate, name, None)
        if name in ("id", "path"):
            if not isinstance(value, str) or not value:
                missing.append(name)
        elif value is None:
            missing.append(name)

    for name in REQUIRED_COROUTINES:
        method = getattr(candidate, name, None)
        if method is None or not inspect.iscoroutinefunction(method):
            missing.append(f"async {name}()")

    return CollectionValidation(valid=not missing, missing=missing)


class DocumentConverter:
    """Maps between cached documents and stored data.

    ``id`` and ``collection`` are always present on a document handed to
    callers and never written to the store.
    """

    @staticmethod
    def to_store(document: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in document.items() if key not in LIBRARY_FIELDS}

    @staticmethod
    def from_snapshot(snapshot: DocumentSnapshot, collection_id: str) -> Optional[Document]:
        if not snapshot.exists:
            return None
        return {**snapshot.data, "id": snapshot.id, "collection": collection_id}
