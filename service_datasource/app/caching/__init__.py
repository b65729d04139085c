"""
Document caching package.

Two tiers: a shared backing key-value cache with TTLs, and a request-scoped
batching loader. Prefer explicit invalidation over short TTLs; the backing
cache is never the source of truth.
"""

from .backends import InMemoryLRUCache, KeyValueCache, RedisKeyValueCache
from .cache_manager import CachedDocumentMethods, NOT_FOUND_MARKER
from .loader import DocumentLoader

__all__ = [
    "CachedDocumentMethods",
    "DocumentLoader",
    "InMemoryLRUCache",
    "KeyValueCache",
    "NOT_FOUND_MARKER",
    "RedisKeyValueCache",
]
