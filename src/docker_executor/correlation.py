"""Request correlation IDs, carried in structlog contextvars."""

import uuid

import structlog

CORRELATION_HEADER = "X-Correlation-ID"
CORRELATION_PREFIX = "req_"


def new_correlation_id() -> str:
    """Generate a correlation ID (``req_<12 hex>``)."""
    return f"{CORRELATION_PREFIX}{uuid.uuid4().hex[:12]}"


def bind_request_context(correlation_id: str, **fields: str) -> None:
    """Bind the correlation ID (and request fields) to every log line in this context."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id, **fields)


def get_correlation_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("correlation_id")


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
