"""
Performance monitoring utilities.
"""

import time
from typing import Any, Callable

import structlog
from fastapi import Request
from prometheus_client import Histogram

from tenancy.core.metrics import (
    http_request_duration_seconds,
    http_requests_in_progress,
    http_requests_total,
)

logger = structlog.get_logger(__name__)


class PerformanceMonitor:
    """
    Time an async block, log the result and optionally feed a histogram.

    Usage:
        async with PerformanceMonitor(
            "create_realm", histogram=h, labels={"step": "realm"}, tenant_id=tid
        ):
            ...
    """

    def __init__(
        self,
        operation_name: str,
        histogram: Histogram | None = None,
        labels: dict[str, str] | None = None,
        **tags: Any,
    ):
        self.operation_name = operation_name
        self.histogram = histogram
        self.labels = labels or {}
        self.tags = tags
        self.start_time: float | None = None
        self.end_time: float | None = None

    async def __aenter__(self) -> "PerformanceMonitor":
        """Start monitoring."""
        self.start_time = time.time()

        logger.debug(
            "operation_started",
            operation=self.operation_name,
            **self.tags,
        )

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Stop monitoring and log results."""
        self.end_time = time.time()
        duration_ms = (self.end_time - self.start_time) * 1000

        if self.histogram is not None:
            self.histogram.labels(
                status="success" if exc_type is None else "failure",
                **self.labels,
            ).observe(duration_ms / 1000)

        if exc_type is None:
            logger.info(
                "operation_completed",
                operation=self.operation_name,
                duration_ms=round(duration_ms, 2),
                **self.tags,
            )
        else:
            logger.warning(
                "operation_failed",
                operation=self.operation_name,
                duration_ms=round(duration_ms, 2),
                error=str(exc_val) or exc_type.__name__,
                **self.tags,
            )

    @property
    def duration_ms(self) -> float | None:
        """Get duration in milliseconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time) * 1000
        return None


async def track_http_metrics(request: Request, call_next: Callable):
    """
    Middleware to track HTTP metrics.

    Records:
    - Request count by endpoint and status
    - Request duration histogram
    - Requests in progress gauge
    """
    method = request.method
    endpoint = request.url.path

    http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()

    start_time = time.time()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response

    finally:
        # Route template keeps label cardinality bounded (tenant ids live in paths)
        route = request.scope.get("route")
        label = getattr(route, "path", endpoint)

        http_request_duration_seconds.labels(
            method=method,
            endpoint=label,
        ).observe(time.time() - start_time)

        http_requests_total.labels(
            method=method,
            endpoint=label,
            status_code=status_code,
        ).inc()

        http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()
