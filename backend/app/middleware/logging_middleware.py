"""
Request Logging Middleware

Correlates every request with a request id and, when it carries a valid
bearer token, the tenant that token names. Mobile clients replaying an
offline queue send their own X-Request-ID so a replayed batch can be traced
across retries; anything that does not look like an id is replaced with a
fresh UUID.
"""
import re
import time
import uuid
import logging
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging_config import clear_request_id, clear_tenant_id, set_request_id, set_tenant_id
from app.core.metrics import record_request_metrics
from app.utils.jwt import claimed_tenant_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_CLIENT_REQUEST_ID = re.compile(r"^[A-Za-z0-9_.:-]{8,64}$")

# Health checks and docs are too chatty to log per request
QUIET_PATHS = frozenset({"/health", "/metrics", "/docs", "/redoc", "/openapi.json"})


def resolve_request_id(incoming: Optional[str]) -> str:
    if incoming and _CLIENT_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request with timing, request id and tenant, and records HTTP metrics.

    The tenant from the bearer token is bound to the logging context before
    the route runs, so service and worker-thread logs for the request carry
    it. The completion line prefers the tenant the auth dependency verified
    and stored on request.state.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = set_request_id(request_id)
        tenant_token = set_tenant_id(claimed_tenant_id(request.headers.get("Authorization")))
        request.state.request_id = request_id

        method = request.method
        path = request.url.path
        verbose = path not in QUIET_PATHS
        started = time.perf_counter()

        if verbose:
            logger.info(
                f"{method} {path} started",
                extra={
                    "event_type": "request_start",
                    "method": method,
                    "path": path,
                    "client_ip": request.client.host if request.client else None,
                    "content_length": request.headers.get("content-length"),
                },
            )

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except Exception as e:
            logger.error(
                f"{method} {path} raised {type(e).__name__}",
                extra={
                    "event_type": "request_error",
                    "method": method,
                    "path": path,
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise
        finally:
            elapsed = time.perf_counter() - started
            if verbose:
                logger.log(
                    _level_for(status_code),
                    f"{method} {path} -> {status_code}",
                    extra={
                        "event_type": "request_complete",
                        "method": method,
                        "path": path,
                        "status_code": status_code,
                        "response_time_ms": round(elapsed * 1000, 2),
                        "tenant_id": getattr(request.state, "tenant_id", None),
                        "actor_id": getattr(request.state, "user_id", None),
                    },
                )
            record_request_metrics(
                method=method,
                path=path,
                status_code=status_code,
                response_time_seconds=elapsed,
            )
            clear_tenant_id(tenant_token)
            clear_request_id(token)
