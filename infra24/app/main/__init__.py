from .core import app

__all__ = ["app"]
