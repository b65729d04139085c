"""
Request-scoped document data source.

Build one per incoming request with ``create_data_source``; share the backing
cache between them. The instance comes back ready to use.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from shared.config import DataSourceConfig, get_config
from shared.errors import InvalidCollectionError
from shared.logging import adapt_logger, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .caching.backends import InMemoryLRUCache, KeyValueCache, RedisKeyValueCache
from .caching.cache_manager import CachedDocumentMethods
from .caching.loader import DocumentLoader
from .codec.serializer import DocumentCodec
from .store.base import (
    Document,
    DocumentCollection,
    DocumentConverter,
    DocumentQuery,
    validate_collection,
)

QueryFunction = Callable[[DocumentCollection], DocumentQuery]

_shared_cache: Optional[KeyValueCache] = None


def get_default_cache(config: Optional[DataSourceConfig] = None) -> KeyValueCache:
    """Process-wide backing cache used when none is injected."""
    global _shared_cache
    if _shared_cache is None:
        config = config or get_config()
        if config.redis_url:
            _shared_cache = RedisKeyValueCache(config.redis_url)
        else:
            _shared_cache = InMemoryLRUCache(
                max_entries=config.memory_cache_max_entries,
                default_ttl=config.memory_cache_default_ttl,
            )
    return _shared_cache


def reset_default_cache() -> None:
    global _shared_cache
    _shared_cache = None


class DocumentDataSource:
    """Cached reads and write-through helpers for one collection."""

    def __init__(
        self,
        collection: DocumentCollection,
        methods: CachedDocumentMethods,
        *,
        context: Optional[Any] = None,
        logger: Optional[Any] = None,
    ):
        self.collection = collection
        self.methods = methods
        self.context = context
        self.logger = adapt_logger(logger) if logger is not None else get_logger("datasource")

    @property
    def cache_prefix(self) -> str:
        return self.methods.cache_prefix

    @property
    def cache(self) -> KeyValueCache:
        return self.methods.cache

    @property
    def loader(self) -> DocumentLoader:
        return self.methods.loader

    async def find_one_by_id(self, doc_id: str, ttl: Optional[int] = None) -> Optional[Document]:
        return await self.methods.find_one_by_id(doc_id, ttl=ttl)

    async def find_many_by_ids(self, doc_ids: Sequence[str], ttl: Optional[int] = None) -> List[Optional[Document]]:
        return await self.methods.find_many_by_ids(doc_ids, ttl=ttl)

    async def delete_from_cache_by_id(self, doc_id: str) -> None:
        await self.methods.delete_from_cache_by_id(doc_id)

    async def prime_loader(self, documents: Union[Document, Sequence[Document]], ttl: Optional[int] = None) -> None:
        await self.methods.prime_loader(documents, ttl=ttl)

    async def find_many_by_query(self, query_fn: QueryFunction, ttl: Optional[int] = None) -> List[Document]:
        """Run a query against the collection and prime both tiers with the results.

        Query results themselves are never served from the cache.
        """
        query = query_fn(self.collection)
        if not isinstance(query, DocumentQuery):
            raise TypeError("query_fn must return a query with an async get()")

        snapshots = await query.get()
        documents = [
            document
            for document in (DocumentConverter.from_snapshot(s, self.collection.id) for s in snapshots)
            if document is not None
        ]
        if documents:
            await self.prime_loader(documents, ttl=ttl)

        self.logger.debug("find_many_by_query complete", collection=self.collection.id, rows=len(documents))
        return documents

    async def _read_back(self, doc_id: str, ttl: Optional[int]) -> Optional[Document]:
        snapshot = await self.collection.get(doc_id)
        result = DocumentConverter.from_snapshot(snapshot, self.collection.id)
        if result is not None:
            await self.prime_loader(result, ttl=ttl)
        return result

    async def create_one(self, data: Dict[str, Any], ttl: Optional[int] = None) -> Optional[Document]:
        """Add a document; data carrying an id is written as an update instead."""
        if data.get("id"):
            return await self.update_one(data, ttl=ttl)

        doc_id = await self.collection.add(DocumentConverter.to_store(data))
        result = await self._read_back(doc_id, ttl)
        self.logger.debug("create_one complete", collection=self.collection.id, doc_id=doc_id)
        return result

    async def update_one(self, document: Dict[str, Any], ttl: Optional[int] = None) -> Optional[Document]:
        """Replace a stored document entirely."""
        doc_id = document.get("id")
        if not doc_id:
            raise ValueError("update_one requires a document with an id")

        self.logger.debug("Updating document", collection=self.collection.id, doc_id=doc_id)
        await self.collection.set(doc_id, DocumentConverter.to_store(document))
        return await self._read_back(doc_id, ttl)

    async def update_one_partial(self, doc_id: str, data: Dict[str, Any], ttl: Optional[int] = None) -> Optional[Document]:
        """Merge ``data`` into a stored document."""
        self.logger.debug("Partially updating document", collection=self.collection.id, doc_id=doc_id)
        await self.collection.set(doc_id, DocumentConverter.to_store(data), merge=True)
        return await self._read_back(doc_id, ttl)

    async def delete_one(self, doc_id: str) -> None:
        """Delete from the store, then from both cache tiers."""
        self.logger.debug("Deleting document", collection=self.collection.id, doc_id=doc_id)
        await self.collection.delete(doc_id)
        await self.delete_from_cache_by_id(doc_id)


def create_data_source(
    collection: DocumentCollection,
    cache: Optional[KeyValueCache] = None,
    *,
    config: Optional[DataSourceConfig] = None,
    logger: Optional[Any] = None,
    context: Optional[Any] = None,
    metrics: Optional[MetricsCollector] = None,
) -> DocumentDataSource:
    """Build a ready data source for one request.

    Raises:
        InvalidCollectionError: ``collection`` lacks a capability the data
            source relies on.
    """
    validation = validate_collection(collection)
    if not validation.valid:
        raise InvalidCollectionError(
            "Data source must be created with a document collection: " + validation.describe(),
            details={"missing": validation.missing}
        )

    config = config or get_config()
    logger = adapt_logger(logger) if logger is not None else get_logger("datasource")
    metrics = metrics or get_metrics_collector()
    cache = cache if cache is not None else get_default_cache(config)

    loader = DocumentLoader(
        collection,
        max_batch_size=config.max_batch_size,
        logger=logger,
        metrics=metrics,
    )
    methods = CachedDocumentMethods(
        collection=collection,
        cache=cache,
        loader=loader,
        codec=DocumentCodec(store=collection.store),
        cache_prefix=config.cache_prefix,
        default_ttl=config.default_ttl,
        cache_not_found=config.cache_not_found,
        not_found_ttl=config.not_found_ttl,
        logger=logger,
        metrics=metrics,
    )
    logger.debug("Data source created", collection=collection.id, cache=type(cache).__name__)
    return DocumentDataSource(collection, methods, context=context, logger=logger)
