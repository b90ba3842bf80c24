"""Chronometry REST server."""

from .app import create_app
from .context import ApiError, ServerContext

__all__ = ["create_app", "ServerContext", "ApiError"]
