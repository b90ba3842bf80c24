"""Shared server state and the request dependencies built on it."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Header, Request

from ..config import ServerSettings
from .database import Database
from .security import SessionStore

__all__ = [
    "ServerContext",
    "ApiError",
    "get_context",
    "bearer_token",
    "current_user",
    "approved_user",
    "admin_user",
    "public_user",
]

logger = logging.getLogger(__name__)


@dataclass
class ServerContext:
    """Everything a request handler needs, owned by one app instance."""

    db: Database
    sessions: SessionStore
    settings: ServerSettings = field(default_factory=ServerSettings)

    @classmethod
    def from_settings(cls, settings: ServerSettings) -> "ServerContext":
        return cls(
            db=Database(settings.db_path),
            sessions=SessionStore(ttl=settings.session_ttl),
            settings=settings,
        )

    def close(self) -> None:
        self.db.close()


class ApiError(Exception):
    """Rendered as ``{"error": message, **extra}`` with the given status."""

    def __init__(self, status_code: int, message: str, **extra):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.extra = extra


def public_user(row: dict) -> dict:
    """User fields safe to send to clients."""
    return {
        "id": row["id"],
        "username": row["username"],
        "firstName": row["first_name"],
        "role": row["role"],
        "status": row["status"],
    }


def get_context(request: Request) -> ServerContext:
    return request.app.state.context


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    """Extract the token from ``Authorization: Bearer <token>``."""
    if not authorization:
        raise ApiError(401, "Not authenticated")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise ApiError(401, "Invalid authentication scheme")
    return token


def current_user(
    token: str = Depends(bearer_token),
    ctx: ServerContext = Depends(get_context),
) -> dict:
    user_id = ctx.sessions.get_user_id(token)
    if user_id is None:
        raise ApiError(401, "Invalid or expired token")
    user = ctx.db.get_user(user_id)
    if user is None:
        ctx.sessions.revoke(token)
        raise ApiError(401, "Invalid or expired token")
    return user


def approved_user(user: dict = Depends(current_user)) -> dict:
    if user["role"] != "admin" and user["status"] != "approved":
        raise ApiError(403, "Account not approved", status=user["status"])
    return user


def admin_user(user: dict = Depends(current_user)) -> dict:
    if user["role"] != "admin":
        raise ApiError(403, "Admin access required")
    return user
