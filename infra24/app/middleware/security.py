from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from infra24.app.core import config as _config


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add recommended security headers to responses.

    Headers already set by a route are left alone. Configured through
    CSP_POLICY, HSTS_MAX_AGE and SECURITY_HEADERS_ENABLED, read per request
    so tests can reload settings.
    """

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        settings = _config.settings
        if not settings.SECURITY_HEADERS_ENABLED:
            return response

        defaults = {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Strict-Transport-Security": f"max-age={settings.HSTS_MAX_AGE}; includeSubDomains",
            "Content-Security-Policy": settings.CSP_POLICY,
        }
        for name, value in defaults.items():
            if name not in response.headers:
                response.headers[name] = value
        return response
