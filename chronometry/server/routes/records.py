"""Worker-facing endpoints: processes, sync, online timing, photos and stats."""

import base64
import binascii
import logging

from fastapi import APIRouter, Depends

from ..context import ApiError, ServerContext, approved_user, get_context
from ..schemas import PhotoUpload, StartRecordRequest, StopRecordRequest, SyncRequest

logger = logging.getLogger(__name__)

records_router = APIRouter(prefix="/api", tags=["records"])


def _owned_record(ctx: ServerContext, record_id: int, user: dict) -> dict:
    record = ctx.db.get_record(record_id)
    if record is None or (record["user_id"] != user["id"] and user["role"] != "admin"):
        raise ApiError(404, "Record not found")
    return record


def _require_process(ctx: ServerContext, process_id: int) -> None:
    if ctx.db.get_process(process_id) is None:
        raise ApiError(400, f"Unknown process {process_id}")


def _decode_photo(file_data: str) -> bytes:
    # Browsers send data URLs: "data:image/jpeg;base64,...."
    if file_data.startswith("data:"):
        file_data = file_data.partition(",")[2]
    try:
        data = base64.b64decode(file_data, validate=True)
    except (binascii.Error, ValueError):
        raise ApiError(400, "Photo data is not valid base64")
    if not data:
        raise ApiError(400, "Photo data is empty")
    return data


@records_router.get("/processes")
def list_processes(user: dict = Depends(approved_user), ctx: ServerContext = Depends(get_context)):
    return ctx.db.list_processes()


@records_router.get("/objects")
def list_objects(user: dict = Depends(approved_user), ctx: ServerContext = Depends(get_context)):
    return ctx.db.list_objects(active_only=True)


@records_router.get("/assignments")
def list_assignments(user: dict = Depends(approved_user), ctx: ServerContext = Depends(get_context)):
    return ctx.db.list_assignments(user_id=user["id"])


@records_router.post("/sync/records")
def sync_records(
    body: SyncRequest,
    user: dict = Depends(approved_user),
    ctx: ServerContext = Depends(get_context),
):
    """Store records captured offline; returns server ids in request order."""
    for record in body.records:
        _require_process(ctx, record.process_id)

    ids = []
    for record in body.records:
        ids.append(
            ctx.db.sync_record(
                user["id"],
                record.model_dump(exclude={"steps", "local_id"}),
                [step.model_dump() for step in record.steps],
            )
        )
    logger.info(f"Synced {len(ids)} record(s) for user {user['username']}")
    return {"success": True, "ids": ids}


@records_router.post("/records/start")
def start_record(
    body: StartRecordRequest,
    user: dict = Depends(approved_user),
    ctx: ServerContext = Depends(get_context),
):
    _require_process(ctx, body.process_id)
    started = ctx.db.start_record(user["id"], body.process_id, body.object_id, body.assignment_id)
    return {"success": True, **started}


@records_router.post("/records/{record_id}/stop")
def stop_record(
    record_id: int,
    body: StopRecordRequest,
    user: dict = Depends(approved_user),
    ctx: ServerContext = Depends(get_context),
):
    record = _owned_record(ctx, record_id, user)
    if record["end_time"] is not None:
        raise ApiError(400, "Record already stopped")
    return {"success": True, **ctx.db.stop_record(record_id, body.comment)}


@records_router.post("/records/{record_id}/steps/{step_id}/start")
def start_step_timing(
    record_id: int,
    step_id: int,
    user: dict = Depends(approved_user),
    ctx: ServerContext = Depends(get_context),
):
    _owned_record(ctx, record_id, user)
    return {"success": True, **ctx.db.start_step_timing(record_id, step_id)}


@records_router.post("/step-timings/{timing_id}/stop")
def stop_step_timing(
    timing_id: int,
    user: dict = Depends(approved_user),
    ctx: ServerContext = Depends(get_context),
):
    timing = ctx.db.get_step_timing(timing_id)
    if timing is None:
        raise ApiError(404, "Step timing not found")
    _owned_record(ctx, timing["time_record_id"], user)
    if timing["end_time"] is not None:
        raise ApiError(400, "Step timing already stopped")
    return {"success": True, **ctx.db.stop_step_timing(timing_id)}


@records_router.get("/records/{record_id}/step-timings")
def list_step_timings(
    record_id: int,
    user: dict = Depends(approved_user),
    ctx: ServerContext = Depends(get_context),
):
    _owned_record(ctx, record_id, user)
    return ctx.db.list_step_timings(record_id)


@records_router.post("/records/{record_id}/photos")
def upload_photo(
    record_id: int,
    body: PhotoUpload,
    user: dict = Depends(approved_user),
    ctx: ServerContext = Depends(get_context),
):
    _owned_record(ctx, record_id, user)
    photo_id = ctx.db.save_photo(
        record_id, _decode_photo(body.file_data), body.step_id, body.comment, body.timestamp
    )
    return {"success": True, "id": photo_id}


@records_router.get("/records/{record_id}/photos")
def list_photos(
    record_id: int,
    user: dict = Depends(approved_user),
    ctx: ServerContext = Depends(get_context),
):
    _owned_record(ctx, record_id, user)
    return [
        {
            "id": photo["id"],
            "stepId": photo["step_id"],
            "comment": photo["comment"],
            "createdAt": photo["created_at"],
            "fileData": base64.b64encode(photo["data"]).decode("ascii"),
        }
        for photo in ctx.db.list_photos(record_id)
    ]


@records_router.get("/stats")
def stats(user: dict = Depends(approved_user), ctx: ServerContext = Depends(get_context)):
    """Per-process totals of the last seven days."""
    return {"success": True, "stats": ctx.db.record_stats(user["id"], days=7)}
