"""Registration, login and session endpoints."""

import logging

from fastapi import APIRouter, Depends

from ..context import ApiError, ServerContext, bearer_token, current_user, get_context, public_user
from ..schemas import LoginRequest, RegisterRequest
from ..security import hash_password, verify_password

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 4

_STATUS_ERRORS = {
    "pending": "Account is awaiting administrator approval",
    "rejected": "Account has been rejected",
}


@auth_router.post("/register")
def register(body: RegisterRequest, ctx: ServerContext = Depends(get_context)):
    username = body.username.strip()
    if not username or not body.password:
        raise ApiError(400, "Username and password are required")
    if len(username) < MIN_USERNAME_LENGTH:
        raise ApiError(400, f"Username must be at least {MIN_USERNAME_LENGTH} characters")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise ApiError(400, f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if ctx.db.get_user_by_username(username):
        raise ApiError(400, "Username already taken")

    # The first account bootstraps the system as an approved admin
    first = ctx.db.count_users() == 0
    user_id = ctx.db.create_user(
        username,
        hash_password(body.password),
        (body.first_name or "").strip() or username,
        role="admin" if first else "user",
        status="approved" if first else "pending",
    )
    logger.info(f"Registered user {username} (id={user_id}, admin={first})")

    message = (
        "Registration complete, you can log in"
        if first
        else "Registration complete, wait for administrator approval"
    )
    return {
        "success": True,
        "message": message,
        "userId": user_id,
        "role": "admin" if first else "user",
        "status": "approved" if first else "pending",
    }


@auth_router.post("/login")
def login(body: LoginRequest, ctx: ServerContext = Depends(get_context)):
    if not body.username or not body.password:
        raise ApiError(400, "Username and password are required")

    user = ctx.db.get_user_by_username(body.username.strip())
    if user is None or not verify_password(body.password, user["password"]):
        logger.info(f"Failed login for {body.username}")
        raise ApiError(401, "Invalid username or password")

    if user["role"] != "admin" and user["status"] != "approved":
        raise ApiError(
            403,
            _STATUS_ERRORS.get(user["status"], "Account not approved"),
            status=user["status"],
        )

    token = ctx.sessions.create(user["id"])
    logger.info(f"User {user['username']} logged in")
    return {"success": True, "token": token, "user": public_user(user)}


@auth_router.post("/logout")
def logout(
    token: str = Depends(bearer_token),
    user: dict = Depends(current_user),
    ctx: ServerContext = Depends(get_context),
):
    ctx.sessions.revoke(token)
    return {"success": True}


@auth_router.get("/me")
def me(user: dict = Depends(current_user)):
    return {"success": True, "user": public_user(user)}
