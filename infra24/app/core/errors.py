"""Domain exceptions raised by services and repositories.

Routers either let these propagate (the app maps them to JSON responses in
`infra24.app.main.core`) or translate them to `HTTPException` themselves.
"""

from typing import Optional


class Infra24Error(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(Infra24Error):
    status_code = 404
    default_detail = "Not found"


class ConflictError(Infra24Error):
    status_code = 409
    default_detail = "Conflict"


class ValidationFailedError(Infra24Error):
    status_code = 400
    default_detail = "Invalid request"


class EmailDeliveryError(Infra24Error):
    status_code = 502
    default_detail = "Email delivery failed"


class AuthenticationRequiredError(Infra24Error):
    status_code = 401
    default_detail = "Authentication required"
