"""
Shared utilities for the document data source.

This package aggregates common building blocks consumed by the caching layer:

- config: Data source configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses

Do not import from service_* packages into shared/.
"""
