"""
Document data source package.

Sits between GraphQL resolvers and a document store, collapsing concurrent
lookups by id into batched fetches and keeping fetched documents in a
shared TTL cache.

Structure:
- app.datasource: request-scoped data source and its factory.
- app.caching: backing caches, batching loader and the two-tier facade.
- app.codec: tagged value types and the cache text codec.
- app.store: document store capabilities and an in-process store.

Design notes:
- Build one data source per request; share only the backing cache.
- Module import must not perform network calls. Redis connects on first use.
"""

from .datasource import DocumentDataSource, create_data_source

__all__ = ["DocumentDataSource", "create_data_source"]
