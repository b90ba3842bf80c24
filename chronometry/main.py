"""Chronometry - desktop client entry point."""

import logging
import signal
import sys
import threading
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import __version__
from .auth import KeychainManager, LoginManager, LoginState
from .config import Config, setup_logging
from .controller import ControllerError, TimerController, TimerState
from .instance import InstanceLock
from .photos import PhotoError
from .sync import (
    ChronometryClient,
    ConnectivityMonitor,
    LocalStore,
    SyncReconciler,
)
from .ui.formatting import format_duration, format_time
from .ui.tray import TrayIcon, TrayState

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Owns the scheduler, the sync loop and the timer tick.

    Pulled out of ChronometryApp so that the app class focuses on
    lifecycle orchestration and event wiring only.
    """

    def __init__(
        self,
        config: Config,
        reconciler: SyncReconciler,
        controller: TimerController,
        tray: TrayIcon,
        is_online: Callable[[], bool],
    ) -> None:
        self.config = config
        self.reconciler = reconciler
        self.controller = controller
        self.tray = tray
        self._is_online = is_online

        self.scheduler = BackgroundScheduler()

    def start(self) -> None:
        """Start the periodic sync and timer jobs."""
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            self._do_sync,
            trigger=IntervalTrigger(seconds=self.config.sync.interval_seconds),
            kwargs={"retry_photos": True},
            id="sync_job",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.controller.tick,
            trigger=IntervalTrigger(seconds=1),
            id="timer_tick_job",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Sync loop started (interval: {self.config.sync.interval_seconds}s)")

    def stop(self) -> None:
        """Shut down the scheduler if running."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def trigger_sync(
        self, job_id: str = "immediate_sync", retry_photos: bool = False
    ) -> None:
        """Schedule a one-off sync (launch, reconnect, manual, after stop)."""
        if self.scheduler.running:
            self.scheduler.add_job(
                self._do_sync,
                kwargs={"retry_photos": retry_photos},
                id=job_id,
                replace_existing=True,
            )

    def _do_sync(self, retry_photos: bool = False) -> None:
        """Perform a sync cycle."""
        user = self.controller.user
        if user is None:
            return
        if not self._is_online():
            self.tray.set_state(TrayState.OFFLINE)
            return

        try:
            stats = self.reconciler.sync(user.id, retry_photos=retry_photos)
        except Exception as e:
            logger.exception(f"Sync error: {e}")
            self.tray.set_state(TrayState.ERROR)
            return

        if stats.skipped:
            return
        self.refresh_tray()
        if not stats.success:
            self.tray.set_state(TrayState.ERROR)

    def refresh_tray(self) -> None:
        """Copy controller state into the tray model."""
        controller = self.controller
        user = controller.user
        if user is None:
            self.tray.update(user_name=None, active_process=None)
            self.tray.set_state(TrayState.LOGGED_OUT)
            return

        process = controller.active_process
        record = controller.active_record
        step = controller.current_step
        stats = controller.today_stats()
        history = [
            f"{format_time(r.start_time)}  {controller.process_name(r.process_id)}  "
            f"{format_duration(r.duration) if r.end_time else 'running'}"
            f"{'' if r.synced or not r.end_time else '  (not synced)'}"
            for r in controller.history()
        ]

        online = self._is_online()
        self.tray.update(
            user_name=user.display_name,
            online=online,
            processes=[(p.id, p.name) for p in controller.processes],
            active_process=(
                (process.name if process else controller.process_name(record.process_id))
                if record
                else None
            ),
            timer=controller.timer_display(),
            current_step=(
                f"{step.step_number}/{len(process.steps)} {step.name}" if step else None
            ),
            can_complete_step=controller.state in (TimerState.RUNNING, TimerState.STEP_PENDING)
            and step is not None,
            finishing=controller.state == TimerState.FINISHING,
            today=f"{stats.tasks} tasks, {format_duration(stats.total_seconds)}",
            pending_sync=len(controller.store.get_unsynced_records(user.id)),
            history=history,
        )
        if record is not None:
            self.tray.set_state(TrayState.TIMING)
        else:
            self.tray.set_state(TrayState.ONLINE if online else TrayState.OFFLINE)


class ChronometryApp:
    """Main application orchestrator.

    Wires components together, handles lifecycle (start / shutdown),
    and routes tray-menu and connectivity events to the appropriate handler.
    """

    def __init__(self):
        """Initialize the application."""
        self.config = Config.load()
        setup_logging(self.config.debug_mode)

        logger.info(f"Chronometry {__version__} starting...")
        logger.info(f"Using API URL: {self.config.api_url}")

        self.client = ChronometryClient(
            api_url=self.config.api_url,
            timeout=self.config.sync.timeout,
        )
        self.store = LocalStore()
        self.keychain = KeychainManager()
        self.login_manager = LoginManager(self.client, self.keychain)
        self.login_manager.set_logout_callback(self._on_session_lost)

        self.connectivity = ConnectivityMonitor(
            self.client.is_reachable,
            on_change=self._on_network_change,
            interval=self.config.sync.connectivity_interval_seconds,
        )
        self.reconciler = SyncReconciler(self.client, self.store)

        self.tray = TrayIcon(
            on_login=self._on_login,
            on_start_process=self._on_start_process,
            on_complete_step=self._on_complete_step,
            on_add_photo=self._on_add_photo,
            on_stop=self._on_stop,
            on_refresh=self._on_refresh,
            on_sync_now=self._on_sync_now,
            on_logout=self._on_logout,
            on_quit=self._on_quit,
        )

        self.controller = TimerController(
            self.store,
            config=self.config,
            api=self.client,
            is_online=lambda: self.connectivity.is_online,
            request_sync=lambda: self.coordinator.trigger_sync("stop_sync"),
            on_state_change=lambda state: self.coordinator.refresh_tray(),
            on_tick=self.tray.set_timer,
        )

        self.coordinator = SyncCoordinator(
            config=self.config,
            reconciler=self.reconciler,
            controller=self.controller,
            tray=self.tray,
            is_online=lambda: self.connectivity.is_online,
        )

        # State
        self._shutdown_done = False
        self._shutdown_event = threading.Event()

    def run(self) -> None:
        """Run the application."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        # Establish connectivity before the first sync decision
        self.connectivity.check()
        self.connectivity.start()

        state = self.login_manager.try_auto_login()
        if state.logged_in:
            self._after_login(state)
        else:
            self.tray.set_state(TrayState.LOGGED_OUT)
            self._on_login()

        logger.info("Chronometry running")
        try:
            self.tray.run_blocking()
        finally:
            self._shutdown()

    # -- Session ----------------------------------------------------------

    def _after_login(self, state: LoginState) -> None:
        self.controller.set_user(state.user)
        self.controller.refresh_processes()
        self.coordinator.start()
        self.coordinator.refresh_tray()
        # Launch with an existing session
        self.coordinator.trigger_sync("launch_sync")

    def _on_login(self) -> None:
        """Open the login dialog off the tray thread."""
        def do_login():
            from .ui.dialogs import LoginWindow

            window = LoginWindow(
                on_login=self.login_manager.login,
                on_register=self.login_manager.register,
            )
            state = window.show()
            if state and state.logged_in:
                self._after_login(state)
            else:
                self.coordinator.refresh_tray()

        threading.Thread(target=do_login, daemon=True).start()

    def _on_logout(self) -> None:
        """Handle logout action."""
        self.login_manager.logout()

    def _on_session_lost(self) -> None:
        """Explicit logout, or the server rejected our session."""
        self.controller.set_user(None)
        self.coordinator.stop()
        self.coordinator.refresh_tray()
        logger.info("Session ended")
        if not self._shutdown_event.is_set():
            self._on_login()

    # -- Timer actions ----------------------------------------------------

    def _run_action(self, action: Callable[[], object]) -> None:
        """Run a controller command, surfacing rejections to the user."""
        def do_action():
            from .ui.dialogs import show_error

            try:
                action()
            except ControllerError as e:
                show_error(e.message)
            except (PhotoError, OSError) as e:
                show_error(str(e))
            finally:
                self.coordinator.refresh_tray()

        threading.Thread(target=do_action, daemon=True).start()

    def _on_start_process(self, process_id: int) -> None:
        self._run_action(lambda: self.controller.start(process_id))

    def _on_complete_step(self) -> None:
        def complete():
            self.controller.complete_step()
            if self.controller.state == TimerState.STEP_DONE:
                self.tray.notify("All steps completed. You can stop the process now.")

        self._run_action(complete)

    def _on_add_photo(self) -> None:
        def add_photo():
            from .ui.dialogs import ask_photo_file

            step = self.controller.current_step
            path = ask_photo_file(step.photo_instructions if step else "")
            if path is None:
                return
            self.controller.add_photo(path.read_bytes())

        self._run_action(add_photo)

    def _on_stop(self) -> None:
        def stop():
            from .ui.dialogs import StopDialog

            prompt = self.controller.request_stop()
            result = StopDialog(prompt).show()
            if result.confirmed:
                self.controller.confirm_stop(result.comment)
            else:
                self.controller.cancel_stop()

        self._run_action(stop)

    def _on_refresh(self) -> None:
        self._run_action(self.controller.refresh_processes)

    def _on_sync_now(self) -> None:
        self.coordinator.trigger_sync("manual_sync", retry_photos=True)

    def _on_network_change(self, is_online: bool) -> None:
        """Handle connectivity change."""
        if is_online:
            logger.info("Server reachable again - triggering sync")
            self.coordinator.trigger_sync("network_sync")
        else:
            logger.info("Server unreachable - working offline")
        self.coordinator.refresh_tray()

    def _on_quit(self) -> None:
        """Handle quit action."""
        logger.info("Quit requested")
        self._shutdown_event.set()
        self.tray.stop()

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}")
        self._shutdown_event.set()
        self.tray.stop()

    # -- Lifecycle --------------------------------------------------------

    def _shutdown(self) -> None:
        """Shutdown the application. Safe to call multiple times."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("Shutting down...")

        self.coordinator.stop()
        self.connectivity.stop()
        self.client.close()
        self.store.close()

        logger.info("Shutdown complete")

    def __enter__(self) -> "ChronometryApp":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._shutdown()


def main() -> None:
    """Main entry point."""
    with InstanceLock() as lock:
        if not lock.acquire():
            print("Chronometry is already running.")
            sys.exit(0)

        with ChronometryApp() as app:
            app.run()


if __name__ == "__main__":
    main()
