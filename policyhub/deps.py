"""
Request-scoped dependencies shared by the routers.
"""

from fastapi import Request
from datetime import date
from typing import Any, MutableMapping, Tuple
import logging

logger = logging.getLogger("policyhub")


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the request id set by the middleware."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"request_id={self.extra['request_id']} | {msg}", kwargs


def get_request_logger(request: Request) -> logging.LoggerAdapter:
    """Logger handed to the services for the current request."""
    request_id = getattr(request.state, "request_id", "unknown")
    return RequestLoggerAdapter(logger, {"request_id": request_id})


def get_today() -> date:
    """Reference date for rate validity and age checks."""
    return date.today()
