"""
Request/response logging middleware.
"""
from typing import Callable, Optional
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.core.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
ORGANIZATION_HEADER = "X-Organization-ID"


def _organization_id(request: Request) -> Optional[str]:
    # Tenant-scoped reads take organization_id as a query parameter
    return request.headers.get(ORGANIZATION_HEADER) or request.query_params.get("organization_id")


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its tenant and a request id echoed back to the client."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        start_time = time.time()

        logger.info(
            f"Request: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "organization_id": _organization_id(request),
                "client_host": request.client.host if request.client else None,
            },
        )

        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id

        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(
            f"Response: {request.method} {request.url.path} - {response.status_code} ({duration_ms:.2f}ms)",
            extra={"request_id": request_id, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        return response
