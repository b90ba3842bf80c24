"""Protocol types for SyncReconciler dependencies."""

from typing import Optional, Protocol, runtime_checkable

from .api_client import PushResult
from .models import Photo, ProcessDefinition, StepCompletion, TimeRecord


@runtime_checkable
class ApiClientProtocol(Protocol):
    """Interface for talking to the Chronometry server."""

    def is_reachable(self) -> bool: ...

    def fetch_processes(self) -> list[ProcessDefinition]: ...

    def push_record(
        self, record: TimeRecord, steps: Optional[list[StepCompletion]] = None
    ) -> PushResult: ...

    def upload_photo(self, server_record_id: int, photo: Photo) -> bool: ...


@runtime_checkable
class LocalStoreProtocol(Protocol):
    """Interface for the records the reconciler drains."""

    def get_unsynced_records(self, user_id: Optional[int] = None) -> list[TimeRecord]: ...

    def get_completed_steps(self, record_id: int) -> list[StepCompletion]: ...

    def mark_synced(self, record_id: int, server_id: Optional[int] = None) -> None: ...

    def get_unsynced_photos(self, record_id: int) -> list[Photo]: ...

    def get_records_with_unsynced_photos(
        self, user_id: Optional[int] = None
    ) -> list[TimeRecord]: ...

    def mark_photo_synced(self, photo_id: int) -> None: ...
