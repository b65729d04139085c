"""
Shared metrics configuration for the document data source.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry, REGISTRY
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics for the caching layer.

    Prometheus refuses to register a metric name twice on one registry, while
    data sources are built per request. Instances are therefore shared per
    registry through ``get_metrics_collector``.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up the caching layer metrics."""
        self._metrics["cache_requests_total"] = Counter(
            "datasource_cache_requests_total",
            "Backing cache lookups by result",
            ["collection", "result"],
            registry=self.registry
        )

        self._metrics["loader_batches_total"] = Counter(
            "datasource_loader_batches_total",
            "Batched store fetches dispatched by the loader",
            ["collection"],
            registry=self.registry
        )

        self._metrics["loader_batch_size"] = Histogram(
            "datasource_loader_batch_size",
            "Number of ids per batched store fetch",
            ["collection"],
            buckets=(1, 2, 5, 10, 25, 50, 100, 250, 500),
            registry=self.registry
        )

        self._metrics["store_errors_total"] = Counter(
            "datasource_store_errors_total",
            "Failed batched store fetches",
            ["collection"],
            registry=self.registry
        )

        self._metrics["serialization_errors_total"] = Counter(
            "datasource_serialization_errors_total",
            "Codec failures",
            ["collection", "direction"],
            registry=self.registry
        )

    def record_cache_request(self, collection: str, result: str):
        """Record a backing cache lookup (hit, miss, not_found or error)."""
        self._metrics["cache_requests_total"].labels(
            collection=collection,
            result=result
        ).inc()

    def record_batch(self, collection: str, size: int):
        """Record a dispatched loader batch."""
        self._metrics["loader_batches_total"].labels(collection=collection).inc()
        self._metrics["loader_batch_size"].labels(collection=collection).observe(size)

    def record_store_error(self, collection: str):
        """Record a failed store fetch."""
        self._metrics["store_errors_total"].labels(collection=collection).inc()

    def record_serialization_error(self, collection: str, direction: str):
        """Record a codec failure; direction is encode or decode."""
        self._metrics["serialization_errors_total"].labels(
            collection=collection,
            direction=direction
        ).inc()

    def get_metric(self, name: str) -> Optional[Any]:
        """Get a metric by name."""
        return self._metrics.get(name)


_collectors: Dict[int, MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get the metrics collector bound to a registry, creating it once."""
    target = registry if registry is not None else REGISTRY
    with _collectors_lock:
        collector = _collectors.get(id(target))
        if collector is None or collector.registry is not target:
            collector = MetricsCollector(target)
            _collectors[id(target)] = collector
        return collector
