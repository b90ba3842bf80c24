"""Request bodies for the REST API.

Clients send camelCase keys; fields are snake_case on the Python side.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..sync.models import parse_timestamp


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Auth


class RegisterRequest(ApiModel):
    username: str = ""
    password: str = ""
    first_name: Optional[str] = None


class LoginRequest(ApiModel):
    username: str = ""
    password: str = ""


# Sync


class StepCompletionIn(ApiModel):
    step_id: int
    completed_at: Optional[str] = None

    @field_validator("completed_at")
    @classmethod
    def _check_timestamp(cls, value: Optional[str]) -> Optional[str]:
        parse_timestamp(value)
        return value


class SyncRecordIn(ApiModel):
    local_id: Optional[int] = None
    process_id: int
    object_id: Optional[int] = None
    assignment_id: Optional[int] = None
    start_time: str
    end_time: Optional[str] = None
    duration: Optional[int] = None
    comment: Optional[str] = None
    steps_completed: int = 0
    steps: List[StepCompletionIn] = Field(default_factory=list)

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_timestamp(cls, value: Optional[str]) -> Optional[str]:
        parse_timestamp(value)
        return value


class SyncRequest(ApiModel):
    records: List[SyncRecordIn]


# Online-mode timing


class StartRecordRequest(ApiModel):
    process_id: int
    object_id: Optional[int] = None
    assignment_id: Optional[int] = None


class StopRecordRequest(ApiModel):
    comment: Optional[str] = None


class PhotoUpload(ApiModel):
    step_id: Optional[int] = None
    file_data: str
    comment: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _check_timestamp(cls, value: Optional[str]) -> Optional[str]:
        parse_timestamp(value)
        return value


# Admin


class StepIn(ApiModel):
    step_number: Optional[int] = None
    name: str
    description: Optional[str] = None
    estimated_duration: Optional[int] = None
    requires_photo: bool = False
    photo_instructions: Optional[str] = None
    is_required: bool = True


class ProcessIn(ApiModel):
    name: str
    description: Optional[str] = None
    category_id: Optional[int] = None
    estimated_duration: Optional[int] = None
    priority: Optional[int] = None
    is_sequential: bool = False
    steps: Optional[List[StepIn]] = None


class ProcessUpdate(ApiModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    estimated_duration: Optional[int] = None
    priority: Optional[int] = None
    is_sequential: Optional[bool] = None
    is_active: Optional[bool] = None
    steps: Optional[List[StepIn]] = None


class CategoryIn(ApiModel):
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None


class RoleUpdate(ApiModel):
    role: str


class StatusUpdate(ApiModel):
    status: str


class ObjectIn(ApiModel):
    name: str
    address: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True


class ObjectUpdate(ApiModel):
    name: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class AssignmentIn(ApiModel):
    user_id: int
    process_id: int
    object_id: Optional[int] = None
    due_date: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class AssignmentUpdate(ApiModel):
    user_id: Optional[int] = None
    process_id: Optional[int] = None
    object_id: Optional[int] = None
    due_date: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
