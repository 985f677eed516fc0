"""
Per-request logging.

Each request gets a correlation id (taken from ``X-Request-ID`` when the
caller sends one). Every record emitted while the request is served carries
that id, and the response echoes it together with ``X-Process-Time``.
"""

import json
import time
from typing import Any, Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from infra24.app.core.logging import (
    clear_request_context,
    generate_request_id,
    get_logger,
    log_request_completed,
    log_request_started,
    set_request_context,
)

PROBE_PATHS = ('/health', '/api/v1/health', '/api/v1/liveness', '/api/v1/readiness')
SENSITIVE_KEYS = (
    'password', 'token', 'secret', 'key', 'authorization',
    'cookie', 'session', 'auth', 'credential', 'private',
)
REDACTED = '<redacted>'

logger = get_logger('api.middleware')


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    def __init__(self, app: ASGIApp, log_request_body: bool = False, max_body_size: int = 1024,
                 skip_paths: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.log_request_body = log_request_body
        self.max_body_size = max_body_size
        self.skip_paths = frozenset(skip_paths or PROBE_PATHS)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        request.state.request_id = request_id
        # set by TenantContextMiddleware, which runs before this one
        set_request_context(request_id, tenant_id=getattr(request.state, 'tenant_slug', None) or '')
        started = time.perf_counter()

        try:
            await self._log_start(request)
            response = await call_next(request)
        except Exception as e:
            logger.exception("Request failed", extra={'extra_fields': {
                'event_type': 'request_error',
                'error_type': type(e).__name__,
                'process_time_ms': _elapsed_ms(started),
            }})
            raise
        else:
            elapsed = _elapsed_ms(started)
            log_request_completed(request.method, request.url.path, response.status_code, elapsed)
            response.headers['X-Request-ID'] = request_id
            response.headers['X-Process-Time'] = str(elapsed)
            return response
        finally:
            clear_request_context()

    async def _log_start(self, request: Request):
        body_size = None
        if self.log_request_body and request.method in ('POST', 'PUT', 'PATCH'):
            body = await request.body()
            body_size = len(body)
            if 0 < body_size <= self.max_body_size:
                logger.debug("Request body", extra={'extra_fields': {
                    'event_type': 'request_body',
                    'body': _decode_body(body),
                }})

        query = dict(request.query_params)
        log_request_started(
            method=request.method,
            path=request.url.path,
            query_params=sanitize(query) if query else None,
            client_ip=client_ip(request),
            user_agent=request.headers.get('user-agent'),
            body_size=body_size,
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _decode_body(body: bytes) -> Any:
    try:
        return sanitize(json.loads(body.decode('utf-8')))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return f"<binary data: {len(body)} bytes>"


def client_ip(request: Request) -> str:
    """Client address, honouring proxy headers."""
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.headers.get('X-Real-IP') or (request.client.host if request.client else 'unknown')


def sanitize(data: Any) -> Any:
    """Redact values whose key looks like a credential."""
    if isinstance(data, dict):
        return {
            key: REDACTED if any(s in key.lower() for s in SENSITIVE_KEYS) else sanitize(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize(item) for item in data]
    return data
