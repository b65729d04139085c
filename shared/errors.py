"""
Shared error handling for the document data source.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class DataSourceException(Exception):
    """Base exception for the data source layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Imported lazily, logging depends on nothing in here
        from shared.logging import request_id_var

        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class SerializationError(DataSourceException):
    """A value could not be encoded to, or decoded from, cache text."""

    def __init__(self, message: str = "Serialization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERIALIZATION_ERROR", message, details)


class InvalidCollectionError(DataSourceException):
    """The data source was built without a usable collection handle."""

    def __init__(self, message: str = "Invalid collection", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_COLLECTION", message, details)


class CacheBackendError(DataSourceException):
    """The backing key-value cache failed."""

    def __init__(self, operation: str, message: str = "Cache backend error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_BACKEND_ERROR", f"{operation}: {message}", details)
        self.operation = operation


class StoreError(DataSourceException):
    """Document store errors."""

    def __init__(self, message: str = "Document store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)
