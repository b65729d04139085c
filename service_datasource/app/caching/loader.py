"""
Request-scoped batching loader for documents.

Every ``load`` issued before the event loop regains control is collected into
one batch and resolved with a single ``batch_get`` against the store. Results
are memoized per id for the lifetime of the loader, which must therefore live
no longer than one request.
"""

from typing import Any, Awaitable, Iterable, List, Optional

from strawberry.dataloader import DataLoader

from shared.logging import adapt_logger, get_logger
from shared.metrics import MetricsCollector
from ..store.base import Document, DocumentCollection, DocumentConverter


class DocumentLoader:
    """Coalesces lookups by id into batched store fetches."""

    def __init__(
        self,
        collection: DocumentCollection,
        *,
        max_batch_size: Optional[int] = None,
        logger: Optional[Any] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.collection = collection
        self.logger = adapt_logger(logger) if logger is not None else get_logger("datasource.loader")
        self.metrics = metrics
        self.batches_dispatched = 0
        self._loader: DataLoader[str, Optional[Document]] = DataLoader(
            load_fn=self._batch_load,
            max_batch_size=max_batch_size,
        )

    async def _batch_load(self, doc_ids: List[str]) -> List[Optional[Document]]:
        """Fetch one batch and align the results with ``doc_ids``."""
        self.batches_dispatched += 1
        if self.metrics:
            self.metrics.record_batch(self.collection.id, len(doc_ids))
        self.logger.debug("Dispatching document batch", collection=self.collection.id, size=len(doc_ids))

        try:
            snapshots = await self.collection.batch_get(doc_ids)
        except Exception as e:
            # Keep failures out of the memo so a later load fetches again
            self._loader.clear_many(doc_ids)
            if self.metrics:
                self.metrics.record_store_error(self.collection.id)
            self.logger.error(
                "Document batch failed",
                collection=self.collection.id,
                size=len(doc_ids),
                error=str(e)
            )
            raise

        # Stores may answer in any order, match by id
        found = {}
        for snapshot in snapshots:
            document = DocumentConverter.from_snapshot(snapshot, self.collection.id)
            if document is not None:
                found[snapshot.id] = document
        return [found.get(doc_id) for doc_id in doc_ids]

    def load(self, doc_id: str) -> Awaitable[Optional[Document]]:
        """Document for ``doc_id``, or None when the store has none."""
        return self._loader.load(doc_id)

    def load_many(self, doc_ids: Iterable[str]) -> Awaitable[List[Optional[Document]]]:
        """Documents in the same order as ``doc_ids``, None where missing."""
        return self._loader.load_many(list(doc_ids))

    def prime(self, document: Document, overwrite: bool = True) -> None:
        """Put a known document in the memo without fetching it.

        Without ``overwrite`` an existing entry wins, including a load that
        is still waiting for its batch.
        """
        doc_id = document.get("id") if isinstance(document, dict) else None
        if not doc_id:
            raise ValueError("Only documents with an id can be primed")
        if not overwrite and self._loader.cache_map.get(doc_id) is not None:
            return
        # Callers keep their dict, the memo keeps its own
        self._loader.prime(doc_id, dict(document), force=overwrite)

    def prime_many(self, documents: Iterable[Document], overwrite: bool = True) -> None:
        for document in documents:
            self.prime(document, overwrite=overwrite)

    def clear(self, doc_id: str) -> None:
        """Forget ``doc_id`` so the next load fetches it again."""
        self._loader.clear(doc_id)

    def clear_all(self) -> None:
        self._loader.clear_all()
