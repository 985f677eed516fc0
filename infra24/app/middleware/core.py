from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from infra24.app.auth.core import verify_identity_token
from infra24.app.core.logging import tenant_id_var
from infra24.app.tenancy.core import resolve_tenant_slug


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Resolve the tenant from host/path and pre-decode the bearer token.

    Sets `request.state.tenant_slug` (None when no tenant matches) and
    `request.state.jwt_payload` (None when the token is absent or invalid).
    It does not enforce authentication; route dependencies do.
    """

    async def dispatch(self, request: Request, call_next):
        slug = resolve_tenant_slug(request.headers.get("host"), request.url.path)
        request.state.tenant_slug = slug
        if slug:
            tenant_id_var.set(slug)

        request.state.jwt_payload = None
        auth = request.headers.get("authorization")
        if auth and auth.lower().startswith("bearer "):
            try:
                request.state.jwt_payload = verify_identity_token(auth.split(None, 1)[1])
            except JWTError:
                # invalid token; auth dependencies report it
                pass

        return await call_next(request)
