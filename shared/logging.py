"""
Shared logging configuration for the document data source.
"""

import sys
import structlog
import logging
import uuid
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlation IDs
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar('tenant_id', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    structlog.get_logger(service_name).debug("Logging configured", log_level=log_level)


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    # "datasource.loader" -> service "datasource"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation context to log events."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    tenant_id = tenant_id_var.get()
    if tenant_id:
        event_dict["tenant_id"] = tenant_id

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_tenant_context(tenant_id: Optional[str] = None):
    """Set tenant context in logging."""
    if tenant_id:
        tenant_id_var.set(tenant_id)


def clear_context():
    """Clear all context variables."""
    request_id_var.set(None)
    tenant_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def adapt_logger(logger: Any) -> Any:
    """Accept an injected logger for key/value events.

    Standard library loggers take no keyword fields, so they are wrapped and
    receive each event rendered as ``key=value`` text. Anything else is
    expected to be structlog-compatible and is returned unchanged.
    """
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        return structlog.wrap_logger(
            logger,
            processors=[
                add_correlation_context,
                structlog.processors.format_exc_info,
                structlog.processors.KeyValueRenderer(key_order=["event"]),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
        )
    return logger
