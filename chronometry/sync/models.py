"""Data types shared by the local store, the API client and the controller."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

__all__ = [
    "TimeRecord",
    "StepCompletion",
    "Photo",
    "ProcessStep",
    "ProcessDefinition",
    "User",
    "utc_now",
    "parse_timestamp",
    "format_timestamp",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if not value:
        return None
    # Python < 3.11 can't parse the Z suffix
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class TimeRecord:
    """One timed execution of a process by a user."""

    user_id: int
    process_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: int = 0
    comment: str = ""
    synced: bool = False
    steps_completed: int = 0
    object_id: Optional[int] = None
    assignment_id: Optional[int] = None
    server_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    @classmethod
    def from_row(cls, row) -> "TimeRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            process_id=row["process_id"],
            start_time=parse_timestamp(row["start_time"]),
            end_time=parse_timestamp(row["end_time"]),
            duration=row["duration"],
            comment=row["comment"] or "",
            synced=bool(row["synced"]),
            steps_completed=row["steps_completed"],
            object_id=row["object_id"],
            assignment_id=row["assignment_id"],
            server_id=row["server_id"],
        )

    def to_payload(self, steps: Optional[list["StepCompletion"]] = None) -> dict:
        """Serialize for ``POST /api/sync/records``."""
        payload = {
            "localId": self.id,
            "processId": self.process_id,
            "objectId": self.object_id,
            "assignmentId": self.assignment_id,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "duration": self.duration,
            "comment": self.comment,
            "stepsCompleted": self.steps_completed,
        }
        if steps:
            payload["steps"] = [s.to_payload() for s in steps]
        return payload


@dataclass
class StepCompletion:
    """A step marked done within a record."""

    record_id: int
    step_id: int
    completed_at: datetime = field(default_factory=utc_now)
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "StepCompletion":
        return cls(
            id=row["id"],
            record_id=row["record_id"],
            step_id=row["step_id"],
            completed_at=parse_timestamp(row["completed_at"]),
        )

    def to_payload(self) -> dict:
        return {
            "stepId": self.step_id,
            "completedAt": format_timestamp(self.completed_at),
        }


@dataclass
class Photo:
    """A JPEG image attached to a record and optionally a step."""

    record_id: int
    data: bytes
    step_id: Optional[int] = None
    timestamp: datetime = field(default_factory=utc_now)
    comment: str = ""
    synced: bool = False
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "Photo":
        return cls(
            id=row["id"],
            record_id=row["record_id"],
            step_id=row["step_id"],
            data=bytes(row["data"]),
            timestamp=parse_timestamp(row["timestamp"]),
            comment=row["comment"] or "",
            synced=bool(row["synced"]),
        )


@dataclass
class ProcessStep:
    """A single ordered step of a process."""

    id: int
    step_number: int
    name: str
    description: str = ""
    estimated_duration: Optional[int] = None
    requires_photo: bool = False
    photo_instructions: str = ""
    is_required: bool = True

    @classmethod
    def from_api(cls, data: dict) -> "ProcessStep":
        return cls(
            id=data["id"],
            step_number=data.get("step_number", 0),
            name=data.get("name", ""),
            description=data.get("description") or "",
            estimated_duration=data.get("estimated_duration"),
            requires_photo=bool(data.get("requires_photo", False)),
            photo_instructions=data.get("photo_instructions") or "",
            is_required=bool(data.get("is_required", True)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_number": self.step_number,
            "name": self.name,
            "description": self.description,
            "estimated_duration": self.estimated_duration,
            "requires_photo": self.requires_photo,
            "photo_instructions": self.photo_instructions,
            "is_required": self.is_required,
        }


@dataclass
class ProcessDefinition:
    """Server-owned process definition, cached locally as a snapshot."""

    id: int
    name: str
    description: str = ""
    category_name: Optional[str] = None
    category_icon: Optional[str] = None
    category_color: Optional[str] = None
    estimated_duration: Optional[int] = None
    is_sequential: bool = False
    steps: list[ProcessStep] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.steps = sorted(self.steps, key=lambda s: s.step_number)

    @property
    def has_steps(self) -> bool:
        return bool(self.steps)

    @classmethod
    def from_api(cls, data: dict) -> "ProcessDefinition":
        """Create from a ``GET /api/processes`` item."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description") or "",
            category_name=data.get("category_name"),
            category_icon=data.get("category_icon"),
            category_color=data.get("category_color"),
            estimated_duration=data.get("estimated_duration"),
            is_sequential=bool(data.get("is_sequential", False)),
            steps=[ProcessStep.from_api(s) for s in data.get("steps") or []],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category_name": self.category_name,
            "category_icon": self.category_icon,
            "category_color": self.category_color,
            "estimated_duration": self.estimated_duration,
            "is_sequential": self.is_sequential,
            "steps": [s.to_dict() for s in self.steps],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class User:
    """Authenticated user as returned by the server."""

    id: int
    username: str
    first_name: str = ""
    role: str = "user"
    status: str = "approved"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def display_name(self) -> str:
        return self.first_name or self.username

    @classmethod
    def from_api(cls, data: dict) -> "User":
        return cls(
            id=data["id"],
            username=data.get("username", ""),
            first_name=data.get("first_name") or data.get("firstName") or "",
            role=data.get("role", "user"),
            status=data.get("status", "approved"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "role": self.role,
            "status": self.status,
        }
