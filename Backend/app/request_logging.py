"""
Request logging middleware.

Assigns every request an id (``X-Request-ID``, reused from the client when
present), and logs method, path, status, duration and the tenant slug.
"""

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .tenancy import extract_slug_from_path

logger = logging.getLogger("app.requests")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        request.state.request_id = request_id
        tenant_slug = extract_slug_from_path(request.url.path)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                f"[{request_id}] {request.method} {request.url.path} failed after {duration_ms:.1f}ms "
                f"(tenant={tenant_slug})"
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id

        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(
            f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} "
            f"in {duration_ms:.1f}ms (tenant={tenant_slug})"
        )
        return response
