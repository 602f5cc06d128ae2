"""X-Request-ID handling.

The id is bound into every log line (deal_engine.core.logging.add_correlation_id)
so allocation, finalization and lifecycle events can be traced to one request.
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"


def setup_correlation_middleware(app: FastAPI) -> None:
    """Echo a client-supplied UUID request id, or mint one."""
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        generator=lambda: uuid.uuid4().hex,
    )


def get_correlation_id() -> str | None:
    return correlation_id.get(None)


__all__ = ["REQUEST_ID_HEADER", "setup_correlation_middleware", "get_correlation_id"]
