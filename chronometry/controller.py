"""Timer controller - the state machine behind the tray UI.

States per active process::

    NONE -> RUNNING -> (STEP_PENDING <-> STEP_DONE)* -> FINISHING -> NONE

All commands work against the local store only. The network is touched
solely through ``refresh_processes`` and the sync trigger fired after a
confirmed stop.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .config import Config
from .photos import normalize_photo
from .sync.http_client import ChronometryClientError
from .sync.models import (
    Photo,
    ProcessDefinition,
    ProcessStep,
    StepCompletion,
    TimeRecord,
    User,
    utc_now,
)
from .sync.store import LocalStore, TodayStats
from .ui.formatting import format_timer_display

__all__ = [
    "TimerController",
    "TimerState",
    "StopPrompt",
    "ControllerError",
    "NotLoggedInError",
    "ProcessAlreadyActiveError",
    "NoActiveProcessError",
    "UnknownProcessError",
    "PhotoRequiredError",
    "InvalidTransitionError",
]

logger = logging.getLogger(__name__)


class TimerState(Enum):
    NONE = "none"
    RUNNING = "running"
    STEP_PENDING = "step_pending"
    STEP_DONE = "step_done"
    FINISHING = "finishing"


_ACTIVE_STATES = {TimerState.RUNNING, TimerState.STEP_PENDING, TimerState.STEP_DONE}


class ControllerError(Exception):
    """A rejected command. ``message`` is shown to the user as-is."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotLoggedInError(ControllerError):
    def __init__(self):
        super().__init__("Please log in first")


class ProcessAlreadyActiveError(ControllerError):
    def __init__(self):
        super().__init__("Another process is already running. Stop it first.")


class NoActiveProcessError(ControllerError):
    def __init__(self):
        super().__init__("No process is running")


class UnknownProcessError(ControllerError):
    def __init__(self, process_id: int):
        super().__init__(f"Process {process_id} not found")
        self.process_id = process_id


class PhotoRequiredError(ControllerError):
    """The current step needs a photo before it can be completed."""

    def __init__(self, step: ProcessStep):
        message = f'Step "{step.name}" requires a photo. Add a photo first.'
        if step.photo_instructions:
            message += f"\n{step.photo_instructions}"
        super().__init__(message)
        self.step = step


class InvalidTransitionError(ControllerError):
    pass


@dataclass
class StopPrompt:
    """What the stop confirmation dialog needs to show."""

    record_id: int
    process_name: str
    elapsed_seconds: int
    remaining_steps: list[ProcessStep] = field(default_factory=list)

    @property
    def has_remaining_steps(self) -> bool:
        return bool(self.remaining_steps)


class TimerController:
    """Drives start/step/photo/stop for the logged-in user."""

    def __init__(
        self,
        store: LocalStore,
        config: Optional[Config] = None,
        api=None,
        is_online: Callable[[], bool] = lambda: False,
        request_sync: Optional[Callable[[], None]] = None,
        on_state_change: Optional[Callable[[TimerState], None]] = None,
        on_tick: Optional[Callable[[str], None]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the controller.

        Args:
            store: Local store all commands write to
            config: Client config (photo and history settings)
            api: Chronometry API client, used to refresh process definitions
            is_online: Returns the last known connectivity state
            request_sync: Fires the sync reconciler (non-blocking)
            on_state_change: Called with the new state after each transition
            on_tick: Called with the ``HH:MM:SS`` display on each tick
            clock: Source of the current UTC time
        """
        self.store = store
        self.config = config or Config()
        self.api = api
        self._is_online = is_online
        self._request_sync = request_sync
        self._on_state_change = on_state_change
        self._on_tick = on_tick
        self._clock = clock

        self._lock = threading.RLock()
        self._user: Optional[User] = None
        self._state = TimerState.NONE
        self._state_before_stop: Optional[TimerState] = None
        self._record: Optional[TimeRecord] = None
        self._process: Optional[ProcessDefinition] = None
        self._completed_step_ids: list[int] = []
        self._processes: list[ProcessDefinition] = []

    # Session

    @property
    def user(self) -> Optional[User]:
        return self._user

    def set_user(self, user: Optional[User]) -> None:
        """Switch to ``user`` (or log out with None) and restore their state."""
        with self._lock:
            self._user = user
            self._reset()
            if user is not None:
                self._processes = self.store.get_cached_processes()
                self.restore()
            else:
                self._set_state(TimerState.NONE)

    def _require_user(self) -> User:
        if self._user is None:
            raise NotLoggedInError()
        return self._user

    # State

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def active_record(self) -> Optional[TimeRecord]:
        return self._record

    @property
    def active_process(self) -> Optional[ProcessDefinition]:
        return self._process

    @property
    def is_sequential(self) -> bool:
        return bool(self._process and self._process.is_sequential and self._process.steps)

    @property
    def current_step(self) -> Optional[ProcessStep]:
        """The next step to complete, or None when all are done."""
        if not self.is_sequential:
            return None
        for step in self._process.steps:
            if step.id not in self._completed_step_ids:
                return step
        return None

    @property
    def remaining_steps(self) -> list[ProcessStep]:
        if not self._process:
            return []
        return [s for s in self._process.steps if s.id not in self._completed_step_ids]

    @property
    def completed_step_count(self) -> int:
        return len(self._completed_step_ids)

    def _set_state(self, state: TimerState) -> None:
        if state != self._state:
            logger.debug(f"Timer state {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    def _reset(self) -> None:
        self._record = None
        self._process = None
        self._completed_step_ids = []
        self._state_before_stop = None

    def _step_state(self) -> TimerState:
        if not self.is_sequential or not self._completed_step_ids:
            return TimerState.RUNNING
        if self.current_step is None:
            return TimerState.STEP_DONE
        return TimerState.STEP_PENDING

    def _find_process(self, process_id: int) -> Optional[ProcessDefinition]:
        for process in self._processes:
            if process.id == process_id:
                return process
        return self.store.get_cached_process(process_id)

    def restore(self) -> TimerState:
        """Rebuild the state from the store's active record after a restart."""
        with self._lock:
            user = self._require_user()
            self._reset()
            record = self.store.get_active_record(user.id)
            if record is None:
                self._set_state(TimerState.NONE)
                return self._state

            self._record = record
            self._process = self._find_process(record.process_id)
            self._completed_step_ids = [
                c.step_id for c in self.store.get_completed_steps(record.id)
            ]
            logger.info(f"Restored active record {record.id} (process {record.process_id})")
            self._set_state(self._step_state())
            return self._state

    # Commands

    def start(
        self,
        process_id: int,
        object_id: Optional[int] = None,
        assignment_id: Optional[int] = None,
    ) -> TimeRecord:
        """Start timing a process.

        Raises:
            NotLoggedInError, ProcessAlreadyActiveError, UnknownProcessError
        """
        with self._lock:
            user = self._require_user()
            if self._state != TimerState.NONE or self.store.get_active_record(user.id):
                raise ProcessAlreadyActiveError()

            process = self._find_process(process_id)
            if process is None:
                raise UnknownProcessError(process_id)

            record = self.store.add_record(
                TimeRecord(
                    user_id=user.id,
                    process_id=process.id,
                    start_time=self._clock(),
                    object_id=object_id,
                    assignment_id=assignment_id,
                )
            )
            self._record = record
            self._process = process
            self._completed_step_ids = []
            logger.info(f"Started process {process.name!r} (record {record.id})")
            self._set_state(TimerState.RUNNING)
            return record

    def complete_step(self) -> ProcessStep:
        """Mark the current step of a sequential process as done.

        Raises:
            NoActiveProcessError: Nothing is running
            InvalidTransitionError: Not a sequential process, all steps are
                done, or the stop dialog is open
            PhotoRequiredError: The step needs a photo and has none
        """
        with self._lock:
            if self._record is None:
                raise NoActiveProcessError()
            if self._state == TimerState.FINISHING:
                raise InvalidTransitionError("Finish or cancel stopping first")
            if not self.is_sequential:
                raise InvalidTransitionError("This process has no sequential steps")

            step = self.current_step
            if step is None:
                raise InvalidTransitionError("All steps are already completed")

            if step.requires_photo and self.store.count_step_photos(self._record.id, step.id) == 0:
                raise PhotoRequiredError(step)

            self.store.add_step_completion(
                StepCompletion(
                    record_id=self._record.id,
                    step_id=step.id,
                    completed_at=self._clock(),
                )
            )
            self._completed_step_ids.append(step.id)
            logger.info(
                f"Completed step {step.step_number} ({step.name!r}) of record {self._record.id}"
            )
            self._set_state(self._step_state())
            return step

    def add_photo(
        self, data: bytes, step_id: Optional[int] = None, comment: str = ""
    ) -> Photo:
        """Attach a photo to the active record.

        On a sequential process the photo goes to the current step unless
        ``step_id`` says otherwise.

        Raises:
            NoActiveProcessError, photos.PhotoError
        """
        with self._lock:
            if self._record is None:
                raise NoActiveProcessError()
            if step_id is None and self.current_step is not None:
                step_id = self.current_step.id

            jpeg = normalize_photo(
                data,
                max_dimension=self.config.photos.max_dimension,
                quality=self.config.photos.jpeg_quality,
            )
            photo = self.store.add_photo(
                Photo(
                    record_id=self._record.id,
                    step_id=step_id,
                    data=jpeg,
                    timestamp=self._clock(),
                    comment=comment,
                )
            )
            logger.info(f"Photo {photo.id} added to record {self._record.id} (step {step_id})")
            if self._on_state_change:
                self._on_state_change(self._state)
            return photo

    def request_stop(self) -> StopPrompt:
        """Open the stop confirmation.

        Raises:
            NoActiveProcessError, InvalidTransitionError
        """
        with self._lock:
            if self._record is None:
                raise NoActiveProcessError()
            if self._state not in _ACTIVE_STATES:
                raise InvalidTransitionError("Stop is already in progress")

            self._state_before_stop = self._state
            prompt = StopPrompt(
                record_id=self._record.id,
                process_name=self._process.name if self._process else f"#{self._record.process_id}",
                elapsed_seconds=self.elapsed_seconds(),
                remaining_steps=self.remaining_steps if self.is_sequential else [],
            )
            self._set_state(TimerState.FINISHING)
            return prompt

    def cancel_stop(self) -> TimerState:
        with self._lock:
            if self._state != TimerState.FINISHING:
                raise InvalidTransitionError("Stop was not requested")
            self._set_state(self._state_before_stop or TimerState.RUNNING)
            self._state_before_stop = None
            return self._state

    def confirm_stop(self, comment: str = "") -> TimeRecord:
        """Finish the active record and fire a sync when online.

        Raises:
            InvalidTransitionError: ``request_stop`` was not called first
        """
        with self._lock:
            if self._state != TimerState.FINISHING or self._record is None:
                raise InvalidTransitionError("Stop was not requested")

            end_time = self._clock()
            duration = int((end_time - self._record.start_time).total_seconds())
            record = self.store.update_record(
                self._record.id,
                end_time=end_time,
                duration=max(0, duration),
                comment=comment.strip(),
                steps_completed=len(self._completed_step_ids),
            )
            logger.info(f"Stopped record {record.id} after {record.duration}s")

            self._reset()
            self._set_state(TimerState.NONE)

        if self._request_sync and self._is_online():
            self._request_sync()
        return record

    # Derived display

    def elapsed_seconds(self) -> int:
        if self._record is None:
            return 0
        return max(0, int((self._clock() - self._record.start_time).total_seconds()))

    def timer_display(self) -> str:
        return format_timer_display(self.elapsed_seconds())

    def tick(self) -> None:
        """Push the current timer display to ``on_tick`` while a record is open."""
        if self._record is not None and self._on_tick:
            self._on_tick(self.timer_display())

    # Read models

    @property
    def processes(self) -> list[ProcessDefinition]:
        return list(self._processes)

    def refresh_processes(self) -> list[ProcessDefinition]:
        """Reload process definitions from the server, or from the cache offline."""
        if self.api is not None and self._is_online():
            try:
                processes = self.api.fetch_processes()
            except ChronometryClientError as e:
                logger.warning(f"Could not refresh processes: {e}")
            else:
                self.store.cache_processes(processes)
                self._processes = processes
                logger.info(f"Loaded {len(processes)} processes from server")
                return self.processes

        self._processes = self.store.get_cached_processes()
        return self.processes

    def history(self, limit: Optional[int] = None) -> list[TimeRecord]:
        user = self._require_user()
        return self.store.get_records(user.id, limit or self.config.history_limit)

    def today_stats(self) -> TodayStats:
        user = self._require_user()
        return self.store.get_today_stats(user.id)

    def process_name(self, process_id: int) -> str:
        process = self._find_process(process_id)
        return process.name if process else f"#{process_id}"
