"""ASGI entry point: `uvicorn infra24.main:app`."""

from infra24.app.main.core import app

__all__ = ["app"]
