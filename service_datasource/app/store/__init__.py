"""
Document store package.

Defines what the data source needs from a document store and ships an
in-process implementation of it.
"""

from .base import (
    CollectionValidation,
    Document,
    DocumentCollection,
    DocumentConverter,
    DocumentQuery,
    DocumentSnapshot,
    DocumentStore,
    validate_collection,
)
from .memory import InMemoryCollection, InMemoryDocumentStore, InMemoryQuery

__all__ = [
    "CollectionValidation",
    "Document",
    "DocumentCollection",
    "DocumentConverter",
    "DocumentQuery",
    "DocumentSnapshot",
    "DocumentStore",
    "InMemoryCollection",
    "InMemoryDocumentStore",
    "InMemoryQuery",
    "validate_collection",
]
