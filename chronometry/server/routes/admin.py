"""Administration endpoints. Every route requires the admin role."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..context import ApiError, ServerContext, admin_user, get_context
from ..schemas import (
    AssignmentIn,
    AssignmentUpdate,
    CategoryIn,
    ObjectIn,
    ObjectUpdate,
    ProcessIn,
    ProcessUpdate,
    RoleUpdate,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

admin_router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(admin_user)])

VALID_ROLES = ("user", "admin")
VALID_STATUSES = ("pending", "approved", "rejected")


def _found(changed: int, what: str) -> dict:
    if not changed:
        raise ApiError(404, f"{what} not found")
    return {"success": True}


def _check_refs(ctx: ServerContext, user_id=None, process_id=None, object_id=None) -> None:
    if user_id is not None and ctx.db.get_user(user_id) is None:
        raise ApiError(400, f"Unknown user {user_id}")
    if process_id is not None and ctx.db.get_process(process_id) is None:
        raise ApiError(400, f"Unknown process {process_id}")
    if object_id is not None and ctx.db.get_object(object_id) is None:
        raise ApiError(400, f"Unknown object {object_id}")


# Processes


@admin_router.get("/processes")
def list_processes(ctx: ServerContext = Depends(get_context)):
    return ctx.db.list_processes(active_only=False)


@admin_router.post("/processes")
def create_process(body: ProcessIn, ctx: ServerContext = Depends(get_context)):
    steps = [step.model_dump() for step in body.steps or []]
    process_id = ctx.db.create_process(body.model_dump(exclude={"steps"}), steps)
    logger.info(f"Created process {body.name!r} (id={process_id}) with {len(steps)} step(s)")
    return {"success": True, "id": process_id}


@admin_router.put("/processes/{process_id}")
def update_process(process_id: int, body: ProcessUpdate, ctx: ServerContext = Depends(get_context)):
    if ctx.db.get_process(process_id) is None:
        raise ApiError(404, "Process not found")
    # Steps are replaced wholesale only when the body carries them
    steps = [step.model_dump() for step in body.steps] if body.steps is not None else None
    ctx.db.update_process(process_id, body.model_dump(exclude_unset=True, exclude={"steps"}), steps)
    return {"success": True}


@admin_router.delete("/processes/{process_id}")
def delete_process(process_id: int, ctx: ServerContext = Depends(get_context)):
    return _found(ctx.db.delete_process(process_id), "Process")


# Categories


@admin_router.get("/categories")
def list_categories(ctx: ServerContext = Depends(get_context)):
    return ctx.db.list_categories()


@admin_router.post("/categories")
def create_category(body: CategoryIn, ctx: ServerContext = Depends(get_context)):
    if any(c["name"] == body.name for c in ctx.db.list_categories()):
        raise ApiError(400, "Category already exists")
    return {"success": True, "id": ctx.db.create_category(body.name, body.icon, body.color)}


# Users


@admin_router.get("/users")
def list_users(ctx: ServerContext = Depends(get_context)):
    return ctx.db.list_users()


@admin_router.put("/users/{user_id}/role")
def set_role(user_id: int, body: RoleUpdate, ctx: ServerContext = Depends(get_context)):
    if body.role not in VALID_ROLES:
        raise ApiError(400, f"Invalid role: {body.role}")
    return _found(ctx.db.set_user_role(user_id, body.role), "User")


@admin_router.put("/users/{user_id}/status")
def set_status(user_id: int, body: StatusUpdate, ctx: ServerContext = Depends(get_context)):
    if body.status not in VALID_STATUSES:
        raise ApiError(400, f"Invalid status: {body.status}")
    result = _found(ctx.db.set_user_status(user_id, body.status), "User")
    if body.status != "approved":
        ctx.sessions.revoke_user(user_id)
    logger.info(f"User {user_id} status set to {body.status}")
    return result


@admin_router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    admin: dict = Depends(admin_user),
    ctx: ServerContext = Depends(get_context),
):
    if user_id == admin["id"]:
        raise ApiError(400, "Cannot delete your own account")
    result = _found(ctx.db.delete_user(user_id), "User")
    ctx.sessions.revoke_user(user_id)
    return result


# Objects


@admin_router.get("/objects")
def list_objects(ctx: ServerContext = Depends(get_context)):
    return ctx.db.list_objects()


@admin_router.post("/objects")
def create_object(body: ObjectIn, ctx: ServerContext = Depends(get_context)):
    return {"success": True, "id": ctx.db.create_object(body.model_dump())}


@admin_router.put("/objects/{object_id}")
def update_object(object_id: int, body: ObjectUpdate, ctx: ServerContext = Depends(get_context)):
    if ctx.db.get_object(object_id) is None:
        raise ApiError(404, "Object not found")
    ctx.db.update_object(object_id, body.model_dump(exclude_unset=True))
    return {"success": True}


@admin_router.delete("/objects/{object_id}")
def delete_object(object_id: int, ctx: ServerContext = Depends(get_context)):
    return _found(ctx.db.delete_object(object_id), "Object")


# Assignments


@admin_router.get("/assignments")
def list_assignments(ctx: ServerContext = Depends(get_context)):
    return ctx.db.list_assignments()


@admin_router.post("/assignments")
def create_assignment(body: AssignmentIn, ctx: ServerContext = Depends(get_context)):
    _check_refs(ctx, body.user_id, body.process_id, body.object_id)
    return {"success": True, "id": ctx.db.create_assignment(body.model_dump())}


@admin_router.put("/assignments/{assignment_id}")
def update_assignment(
    assignment_id: int, body: AssignmentUpdate, ctx: ServerContext = Depends(get_context)
):
    if ctx.db.get_assignment(assignment_id) is None:
        raise ApiError(404, "Assignment not found")
    _check_refs(ctx, body.user_id, body.process_id, body.object_id)
    ctx.db.update_assignment(assignment_id, body.model_dump(exclude_unset=True))
    return {"success": True}


@admin_router.delete("/assignments/{assignment_id}")
def delete_assignment(assignment_id: int, ctx: ServerContext = Depends(get_context)):
    return _found(ctx.db.delete_assignment(assignment_id), "Assignment")


# Analytics


@admin_router.get("/analytics/summary")
def analytics_summary(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    ctx: ServerContext = Depends(get_context),
):
    return ctx.db.analytics_summary(start_date, end_date)


@admin_router.get("/analytics/by-process")
def analytics_by_process(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    ctx: ServerContext = Depends(get_context),
):
    return ctx.db.stats_by_process(start_date, end_date)


@admin_router.get("/analytics/by-user")
def analytics_by_user(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    ctx: ServerContext = Depends(get_context),
):
    return ctx.db.stats_by_user(start_date, end_date)
