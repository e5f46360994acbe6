from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import time
import uuid

import structlog

from dropline.core.logging import bind_context, clear_context

logger = structlog.get_logger(__name__)

class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        clear_context()
        bind_context(request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12])
        response = await call_next(request)
        logger.info(
            "Request handled",
            path=request.url.path,
            method=request.method,
            status=response.status_code,
            latency_ms=int((time.time() - start) * 1000),
        )
        return response
