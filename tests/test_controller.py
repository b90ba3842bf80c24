"""Tests for the timer controller."""

import io
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest
from PIL import Image

from chronometry.controller import (
    InvalidTransitionError,
    NoActiveProcessError,
    NotLoggedInError,
    PhotoRequiredError,
    ProcessAlreadyActiveError,
    TimerController,
    TimerState,
    UnknownProcessError,
)
from chronometry.sync.http_client import NetworkError
from chronometry.sync.models import ProcessDefinition, ProcessStep, User
from chronometry.sync.store import LocalStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def png_bytes(size=(40, 30)):
    buffer = io.BytesIO()
    Image.new("RGB", size, "red").save(buffer, format="PNG")
    return buffer.getvalue()


SIMPLE = ProcessDefinition(id=1, name="Cleaning")
SEQUENTIAL = ProcessDefinition(
    id=2,
    name="Receiving",
    is_sequential=True,
    steps=[
        ProcessStep(id=21, step_number=1, name="Unload"),
        ProcessStep(
            id=22,
            step_number=2,
            name="Check note",
            requires_photo=True,
            photo_instructions="Photograph the signed note",
        ),
        ProcessStep(id=23, step_number=3, name="Store"),
    ],
)


class TestTimerController:
    """Tests for TimerController."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = LocalStore(db_path=Path(self.temp_dir) / "test.db")
        self.store.cache_processes([SIMPLE, SEQUENTIAL])
        self.clock = FakeClock()
        self.online = False
        self.request_sync = Mock()
        self.states = []
        self.controller = TimerController(
            self.store,
            is_online=lambda: self.online,
            request_sync=self.request_sync,
            on_state_change=self.states.append,
            clock=self.clock,
        )
        self.controller.set_user(User(id=1, username="anna"))

    def teardown_method(self):
        """Clean up."""
        self.store.close()

    def test_requires_login(self):
        controller = TimerController(self.store)

        with pytest.raises(NotLoggedInError):
            controller.start(1)

    def test_start_creates_active_record(self):
        record = self.controller.start(1)

        assert self.controller.state == TimerState.RUNNING
        assert record.id is not None
        assert self.store.get_active_record(1).id == record.id
        assert record.start_time == self.clock.now

    def test_start_unknown_process(self):
        with pytest.raises(UnknownProcessError):
            self.controller.start(99)

        assert self.controller.state == TimerState.NONE

    def test_only_one_active_record(self):
        self.controller.start(1)

        with pytest.raises(ProcessAlreadyActiveError):
            self.controller.start(2)

        assert len(self.store.get_records(1)) == 1

    def test_start_stop_duration(self):
        self.controller.start(1)
        self.clock.advance(125.7)

        self.controller.request_stop()
        record = self.controller.confirm_stop("  all good  ")

        assert record.duration == 125
        assert record.end_time == self.clock.now
        assert record.comment == "all good"
        assert self.controller.state == TimerState.NONE
        assert self.store.get_active_record(1) is None

    def test_timer_display(self):
        self.controller.start(1)
        self.clock.advance(3723)

        assert self.controller.elapsed_seconds() == 3723
        assert self.controller.timer_display() == "01:02:03"

    def test_tick_reports_display(self):
        on_tick = Mock()
        self.controller._on_tick = on_tick
        self.controller.tick()
        on_tick.assert_not_called()

        self.controller.start(1)
        self.clock.advance(5)
        self.controller.tick()

        on_tick.assert_called_once_with("00:00:05")

    def test_sequential_steps(self):
        self.controller.start(2)
        assert self.controller.current_step.id == 21

        self.controller.complete_step()

        assert self.controller.state == TimerState.STEP_PENDING
        assert self.controller.current_step.id == 22

    def test_photo_required_blocks_step(self):
        self.controller.start(2)
        self.controller.complete_step()

        with pytest.raises(PhotoRequiredError) as exc_info:
            self.controller.complete_step()

        assert "Photograph the signed note" in exc_info.value.message
        assert self.controller.state == TimerState.STEP_PENDING
        assert self.controller.current_step.id == 22

    def test_photo_unblocks_step(self):
        self.controller.start(2)
        self.controller.complete_step()

        photo = self.controller.add_photo(png_bytes())
        self.controller.complete_step()
        self.controller.complete_step()

        assert photo.step_id == 22
        assert photo.data[:2] == b"\xff\xd8"
        assert self.controller.state == TimerState.STEP_DONE
        assert self.controller.current_step is None
        with pytest.raises(InvalidTransitionError):
            self.controller.complete_step()

    def test_complete_step_on_simple_process(self):
        self.controller.start(1)

        with pytest.raises(InvalidTransitionError):
            self.controller.complete_step()

    def test_complete_step_without_record(self):
        with pytest.raises(NoActiveProcessError):
            self.controller.complete_step()

    def test_stop_reports_remaining_steps(self):
        self.controller.start(2)
        self.controller.complete_step()

        prompt = self.controller.request_stop()

        assert prompt.process_name == "Receiving"
        assert [s.id for s in prompt.remaining_steps] == [22, 23]
        assert self.controller.state == TimerState.FINISHING

        record = self.controller.confirm_stop()
        assert record.steps_completed == 1

    def test_cancel_stop_restores_state(self):
        self.controller.start(2)
        self.controller.complete_step()
        self.controller.request_stop()

        assert self.controller.cancel_stop() == TimerState.STEP_PENDING

        with pytest.raises(InvalidTransitionError):
            self.controller.confirm_stop()

    def test_no_step_completion_while_finishing(self):
        self.controller.start(2)
        self.controller.request_stop()

        with pytest.raises(InvalidTransitionError):
            self.controller.complete_step()

    def test_stop_without_record(self):
        with pytest.raises(NoActiveProcessError):
            self.controller.request_stop()

    def test_confirm_stop_syncs_only_online(self):
        self.controller.start(1)
        self.controller.request_stop()
        self.controller.confirm_stop()
        self.request_sync.assert_not_called()

        self.online = True
        self.controller.start(1)
        self.controller.request_stop()
        self.controller.confirm_stop()
        self.request_sync.assert_called_once()

    def test_restore_after_restart(self):
        self.controller.start(2)
        self.controller.complete_step()

        restarted = TimerController(self.store, clock=self.clock)
        restarted.set_user(User(id=1, username="anna"))

        assert restarted.state == TimerState.STEP_PENDING
        assert restarted.active_process.name == "Receiving"
        assert restarted.current_step.id == 22

    def test_state_change_callbacks(self):
        self.controller.start(1)
        self.controller.request_stop()
        self.controller.confirm_stop()

        assert self.states[-3:] == [TimerState.RUNNING, TimerState.FINISHING, TimerState.NONE]

    def test_refresh_processes_online(self):
        api = Mock()
        api.fetch_processes.return_value = [ProcessDefinition(id=5, name="Stock count")]
        self.controller.api = api
        self.online = True

        processes = self.controller.refresh_processes()

        assert [p.id for p in processes] == [5]
        assert [p.id for p in self.store.get_cached_processes()] == [5]

    def test_refresh_processes_falls_back_to_cache(self):
        api = Mock()
        api.fetch_processes.side_effect = NetworkError("down")
        self.controller.api = api
        self.online = True

        processes = self.controller.refresh_processes()

        assert [p.id for p in processes] == [1, 2]

    def test_refresh_processes_offline_skips_network(self):
        api = Mock()
        self.controller.api = api

        self.controller.refresh_processes()

        api.fetch_processes.assert_not_called()

    def test_history_limit_and_names(self):
        for _ in range(3):
            self.controller.start(1)
            self.clock.advance(60)
            self.controller.request_stop()
            self.controller.confirm_stop()

        assert len(self.controller.history(limit=2)) == 2
        assert self.controller.process_name(1) == "Cleaning"
        assert self.controller.process_name(42) == "#42"
