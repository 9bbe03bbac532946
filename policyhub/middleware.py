"""
Request logging middleware and logging setup.
"""

import os
import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("policyhub")

# Path prefix -> slow request threshold in ms. Quotes are called on every
# form change in the portal, submissions run the full rule set.
SLOW_REQUEST_THRESHOLDS_MS = {
    "/api/premium": float(os.getenv("SLOW_QUOTE_MS", "250")),
    "/api/applications": float(os.getenv("SLOW_SUBMISSION_MS", "1000")),
}
DEFAULT_SLOW_REQUEST_MS = float(os.getenv("SLOW_REQUEST_MS", "500"))


def configure_logging(level: str = None) -> None:
    """Configure the root handler once; LOG_LEVEL overrides the default level."""
    logging.basicConfig(
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def slow_threshold_ms(path: str) -> float:
    for prefix, threshold in SLOW_REQUEST_THRESHOLDS_MS.items():
        if path.startswith(prefix):
            return threshold
    return DEFAULT_SLOW_REQUEST_MS


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Attaches a request id and logs every request with its duration.

    The id comes from the X-Request-ID header when the portal sends one.
    Routers read it from request.state through get_request_logger, so
    service log lines for one quote or submission share the same id.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        path = request.url.path
        started = time.perf_counter()

        logger.info(f"Request started | request_id={request_id} | method={request.method} | path={path}")

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.error(
                f"Request failed | request_id={request_id} | path={path} | "
                f"duration_ms={elapsed_ms:.2f} | error={e}"
            )
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"Request completed | request_id={request_id} | method={request.method} | "
            f"path={path} | status={response.status_code} | duration_ms={elapsed_ms:.2f}"
        )

        threshold = slow_threshold_ms(path)
        if elapsed_ms > threshold:
            logger.warning(
                f"Slow request | request_id={request_id} | path={path} | "
                f"duration_ms={elapsed_ms:.2f} | threshold_ms={threshold:.0f}"
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
        return response
