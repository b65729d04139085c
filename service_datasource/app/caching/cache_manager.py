"""
Two-tier document cache.

Lookups go to the shared backing cache first and fall back to the
request-scoped loader on a miss. Freshly fetched documents are written back
to the backing cache. Cache hits never go through the loader.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from shared.errors import SerializationError
from shared.logging import adapt_logger, get_logger
from shared.metrics import MetricsCollector
from ..codec.serializer import DocumentCodec
from ..store.base import Document, DocumentCollection
from .backends import KeyValueCache
from .loader import DocumentLoader

# JSON null; a real document always encodes to an object
NOT_FOUND_MARKER = "null"


class CachedDocumentMethods:
    """find/delete/prime operations over the backing cache and the loader."""

    def __init__(
        self,
        *,
        collection: DocumentCollection,
        cache: KeyValueCache,
        loader: DocumentLoader,
        codec: DocumentCodec,
        cache_prefix: str = "",
        default_ttl: Optional[int] = None,
        cache_not_found: bool = False,
        not_found_ttl: int = 30,
        logger: Optional[Any] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.collection = collection
        self.cache = cache
        self.loader = loader
        self.codec = codec
        self.cache_prefix = cache_prefix
        self.default_ttl = default_ttl
        self.cache_not_found = cache_not_found
        self.not_found_ttl = not_found_ttl
        self.logger = adapt_logger(logger) if logger is not None else get_logger("datasource.cache_manager")
        self.metrics = metrics

    def cache_key(self, doc_id: str) -> str:
        """Backing cache key for a document id."""
        return f"{self.cache_prefix}{self.collection.id}:{doc_id}"

    def _resolve_ttl(self, ttl: Optional[int]) -> Optional[int]:
        effective = self.default_ttl if ttl is None else ttl
        if effective is not None and effective < 0:
            raise ValueError(f"TTL must be zero or positive, got {effective}")
        return effective

    def _record(self, result: str):
        if self.metrics:
            self.metrics.record_cache_request(self.collection.id, result)

    async def _safe_get(self, key: str) -> Optional[str]:
        """Read the backing cache; an unavailable cache reads as a miss."""
        try:
            return await self.cache.get(key)
        except Exception as exc:
            self._record("error")
            self.logger.warning("Cache fetch error, treating as miss", key=key, error=str(exc))
            return None

    async def _safe_set(self, key: str, value: str, ttl: Optional[int]) -> None:
        """Write the backing cache; a failed write only costs a later miss."""
        if ttl == 0:
            return
        try:
            await self.cache.set(key, value, ttl)
        except Exception as exc:
            self.logger.warning("Cache write error, entry skipped", key=key, error=str(exc))

    def _encode(self, document: Any) -> str:
        try:
            return self.codec.encode(document)
        except SerializationError as exc:
            if self.metrics:
                self.metrics.record_serialization_error(self.collection.id, "encode")
            self.logger.error("Document could not be encoded", collection=self.collection.id, error=exc.message, details=exc.details)
            raise

    def _decode(self, key: str, text: str) -> Document:
        try:
            return self.codec.decode(text)
        except SerializationError as exc:
            if self.metrics:
                self.metrics.record_serialization_error(self.collection.id, "decode")
            self.logger.error("Cached document could not be decoded", key=key, error=exc.message)
            raise

    def _is_not_found_marker(self, cached: str) -> bool:
        return self.cache_not_found and cached == NOT_FOUND_MARKER

    async def find_one_by_id(self, doc_id: str, ttl: Optional[int] = None) -> Optional[Document]:
        """Document by id, from the backing cache when present."""
        effective_ttl = self._resolve_ttl(ttl)
        key = self.cache_key(doc_id)

        cached = await self._safe_get(key)
        if cached is not None and cached != NOT_FOUND_MARKER:
            document = self._decode(key, cached)
            self._record("hit")
            return document
        if cached is not None and self._is_not_found_marker(cached):
            self._record("not_found")
            return None

        self._record("miss")
        document = await self.loader.load(doc_id)
        if document is None:
            if self.cache_not_found:
                await self._safe_set(key, NOT_FOUND_MARKER, self.not_found_ttl)
            self.logger.debug("Document not found", collection=self.collection.id, doc_id=doc_id)
            return None

        await self._safe_set(key, self._encode(document), effective_ttl)
        # The memo copy stays untouched by callers
        return dict(document)

    async def find_many_by_ids(self, doc_ids: Iterable[str], ttl: Optional[int] = None) -> List[Optional[Document]]:
        """Documents in the order of ``doc_ids``, None where missing."""
        effective_ttl = self._resolve_ttl(ttl)
        doc_ids = list(doc_ids)
        keys = [self.cache_key(doc_id) for doc_id in doc_ids]

        cached_values = await asyncio.gather(*(self._safe_get(key) for key in keys))

        results: List[Optional[Document]] = [None] * len(doc_ids)
        miss_positions: List[int] = []
        for position, (key, cached) in enumerate(zip(keys, cached_values)):
            if cached is None or (cached == NOT_FOUND_MARKER and not self.cache_not_found):
                miss_positions.append(position)
                self._record("miss")
            elif cached == NOT_FOUND_MARKER:
                self._record("not_found")
            else:
                results[position] = self._decode(key, cached)
                self._record("hit")

        if not miss_positions:
            return results

        fetched = await self.loader.load_many([doc_ids[position] for position in miss_positions])

        found: Dict[str, Document] = {}
        not_found: List[str] = []
        for position, document in zip(miss_positions, fetched):
            results[position] = dict(document) if document is not None else None
            if document is not None:
                found[doc_ids[position]] = document
            else:
                not_found.append(doc_ids[position])

        # Encode everything before the first write
        encoded = {doc_id: self._encode(document) for doc_id, document in found.items()}
        writes = [self._safe_set(self.cache_key(doc_id), text, effective_ttl) for doc_id, text in encoded.items()]
        if self.cache_not_found:
            writes.extend(
                self._safe_set(self.cache_key(doc_id), NOT_FOUND_MARKER, self.not_found_ttl)
                for doc_id in dict.fromkeys(not_found)
            )
        if writes:
            await asyncio.gather(*writes)

        self.logger.debug(
            "Documents resolved",
            collection=self.collection.id,
            requested=len(doc_ids),
            cache_hits=len(doc_ids) - len(miss_positions),
            fetched=len(found),
        )
        return results

    async def delete_from_cache_by_id(self, doc_id: str) -> None:
        """Drop a document from both tiers. The store is not touched."""
        self.loader.clear(doc_id)
        await self.cache.delete(self.cache_key(doc_id))
        self.logger.debug("Document evicted from cache", collection=self.collection.id, doc_id=doc_id)

    async def prime_loader(self, documents: Union[Document, Sequence[Document]], ttl: Optional[int] = None) -> None:
        """Write known documents through to the loader and the backing cache."""
        effective_ttl = self._resolve_ttl(ttl)
        docs = [documents] if isinstance(documents, dict) else list(documents)
        for document in docs:
            if not isinstance(document, dict) or not document.get("id"):
                raise ValueError("Only documents with an id can be primed")
        if not docs:
            return

        encoded = [self._encode(document) for document in docs] if effective_ttl != 0 else []

        for document in docs:
            self.loader.prime(document, overwrite=True)

        if encoded:
            await asyncio.gather(*(
                self._safe_set(self.cache_key(document["id"]), text, effective_ttl)
                for document, text in zip(docs, encoded)
            ))
        self.logger.debug("Documents primed", collection=self.collection.id, count=len(docs), ttl=effective_ttl)
