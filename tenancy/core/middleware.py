"""
Request correlation middleware.

Every request gets a request id that shows up in its log lines and is
echoed back in the X-Request-ID header. Tenant-scoped routes resolve the
caller's tenant while authenticating the bearer token; that tenant id is
then attached to the completion log line and to the X-Tenant-ID header.
"""

import re
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from tenancy.core.context import clear_request_context, set_request_context

logger = structlog.get_logger(__name__)

# Client supplied ids are echoed into headers and logs, so keep them plain
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def resolve_request_id(request: Request) -> str:
    """Use the caller's X-Request-ID when it is well formed, else mint one."""
    supplied = request.headers.get("X-Request-ID")
    if supplied and REQUEST_ID_PATTERN.match(supplied):
        return supplied
    return uuid.uuid4().hex


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Correlates logs and responses with the request and its tenant."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request)
        request.state.request_id = request_id
        # Filled in by the tenant token dependency on tenant-scoped routes
        request.state.tenant_id = None
        set_request_context(request_id=request_id)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                tenant_id=request.state.tenant_id,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(e),
                exc_info=True,
            )
            clear_request_context()
            raise

        tenant_id = request.state.tenant_id
        response.headers["X-Request-ID"] = request_id
        if tenant_id:
            response.headers["X-Tenant-ID"] = tenant_id

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            tenant_id=tenant_id,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        clear_request_context()
        return response
