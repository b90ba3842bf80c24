"""System tray icon and menu."""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

import pystray
from PIL import Image, ImageDraw
from pystray import MenuItem as Item

__all__ = ["TrayIcon", "TrayState", "TrayModel", "STATE_COLORS", "create_icon_image"]

logger = logging.getLogger(__name__)

APP_TITLE = "Chronometry"
SEPARATOR = pystray.Menu.SEPARATOR


class TrayState(Enum):
    """Tray icon states."""

    ONLINE = "online"  # Green - connected, idle
    TIMING = "timing"  # Blue - a process is running
    OFFLINE = "offline"  # Yellow - server unreachable, records kept locally
    ERROR = "error"  # Red - last sync failed
    LOGGED_OUT = "logged_out"  # Amber - waiting for login
    STARTING = "starting"  # Gray - starting up


STATE_COLORS = {
    TrayState.ONLINE: "#22c55e",
    TrayState.TIMING: "#3b82f6",
    TrayState.OFFLINE: "#eab308",
    TrayState.ERROR: "#ef4444",
    TrayState.LOGGED_OUT: "#f59e0b",
    TrayState.STARTING: "#9ca3af",
}


class TrayModel:
    """Display state for the tray icon.

    TrayIcon reads from this for rendering; the app mutates it through the
    public ``TrayIcon.update`` method.
    """

    def __init__(self) -> None:
        self.state: TrayState = TrayState.STARTING
        self.online: bool = False
        self.user_name: Optional[str] = None

        # (id, label) pairs for the start submenu
        self.processes: list[tuple[int, str]] = []

        self.active_process: Optional[str] = None
        self.timer: str = "00:00:00"
        self.current_step: Optional[str] = None
        self.can_complete_step: bool = False
        self.finishing: bool = False

        self.today: str = "0 tasks, 0s"
        self.pending_sync: int = 0
        self.history: list[str] = []

    @property
    def logged_in(self) -> bool:
        return self.user_name is not None

    @property
    def is_timing(self) -> bool:
        return self.active_process is not None


def create_icon_image(color: str, size: int = 64) -> Image.Image:
    """Create a simple colored circle icon.

    Args:
        color: Hex color code
        size: Icon size in pixels
    """
    image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)

    margin = size // 8
    draw.ellipse([margin, margin, size - margin, size - margin], fill=color)

    return image


class TrayIcon:
    """System tray icon with timer controls."""

    def __init__(
        self,
        on_login: Optional[Callable[[], None]] = None,
        on_start_process: Optional[Callable[[int], None]] = None,
        on_complete_step: Optional[Callable[[], None]] = None,
        on_add_photo: Optional[Callable[[], None]] = None,
        on_stop: Optional[Callable[[], None]] = None,
        on_refresh: Optional[Callable[[], None]] = None,
        on_sync_now: Optional[Callable[[], None]] = None,
        on_logout: Optional[Callable[[], None]] = None,
        on_quit: Optional[Callable[[], None]] = None,
    ):
        """Initialize tray icon.

        Args:
            on_login: Opens the login dialog
            on_start_process: Starts the process with the given id
            on_complete_step: Completes the current step
            on_add_photo: Opens the photo file picker
            on_stop: Opens the stop confirmation
            on_refresh: Reloads process definitions
            on_sync_now: Triggers an immediate sync
            on_logout: Logs out
            on_quit: Quits the app
        """
        self._on_login = on_login
        self._on_start_process = on_start_process
        self._on_complete_step = on_complete_step
        self._on_add_photo = on_add_photo
        self._on_stop = on_stop
        self._on_refresh = on_refresh
        self._on_sync_now = on_sync_now
        self._on_logout = on_logout
        self._on_quit = on_quit

        self.model = TrayModel()

        self._icon: Optional[pystray.Icon] = None
        self._thread: Optional[threading.Thread] = None

    def _create_menu(self) -> pystray.Menu:
        """Create the tray menu."""
        model = self.model
        items = []

        if not model.logged_in:
            items.append(Item("Log In...", self._call(self._on_login), default=True))
            items.append(SEPARATOR)
            items.append(Item("Quit", self._handle_quit))
            return pystray.Menu(*items)

        connection = "Online" if model.online else "Offline"
        items.append(Item(f"{model.user_name} ({connection})", None, enabled=False))
        items.append(SEPARATOR)

        # Active process
        if model.is_timing:
            items.append(Item(f"{model.active_process}  {model.timer}", None, enabled=False))
            if model.current_step:
                items.append(Item(f"  Step: {model.current_step}", None, enabled=False))
                items.append(Item(
                    "Complete Step",
                    self._call(self._on_complete_step),
                    enabled=model.can_complete_step and not model.finishing,
                ))
            items.append(Item("Add Photo...", self._call(self._on_add_photo)))
            items.append(Item("Stop...", self._call(self._on_stop), enabled=not model.finishing))
        else:
            start_items = [
                Item(label, self._make_start_handler(process_id))
                for process_id, label in model.processes
            ] or [Item("No processes available", None, enabled=False)]
            items.append(Item("Start Process", pystray.Menu(*start_items)))
            items.append(Item("Refresh Processes", self._call(self._on_refresh)))

        items.append(SEPARATOR)

        # Stats & history
        items.append(Item(f"Today: {model.today}", None, enabled=False))
        if model.pending_sync:
            items.append(Item(f"Waiting to sync: {model.pending_sync}", None, enabled=False))
        history_items = [Item(line, None, enabled=False) for line in model.history] or [
            Item("No records yet", None, enabled=False)
        ]
        items.append(Item("History", pystray.Menu(*history_items)))
        items.append(Item("Sync Now", self._call(self._on_sync_now), enabled=model.online))

        items.append(SEPARATOR)
        items.append(Item("Log Out", self._call(self._on_logout), enabled=not model.is_timing))
        items.append(Item("Quit", self._handle_quit))

        return pystray.Menu(*items)

    # -- Menu action handlers ------------------------------------------------

    @staticmethod
    def _call(callback: Optional[Callable[[], None]]) -> Callable:
        def handler(icon, item):
            if callback:
                callback()
        return handler

    def _make_start_handler(self, process_id: int) -> Callable:
        """Create a handler that starts one process."""
        def handler(icon, item):
            if self._on_start_process:
                self._on_start_process(process_id)
        return handler

    def _handle_quit(self, icon, item) -> None:
        if self._on_quit:
            self._on_quit()
        self.stop()

    # -- State updates -------------------------------------------------------

    def update(self, **changes) -> None:
        """Set model attributes and redraw."""
        for name, value in changes.items():
            if not hasattr(self.model, name):
                raise AttributeError(f"TrayModel has no attribute {name!r}")
            setattr(self.model, name, value)
        self._update_icon()

    def set_state(self, state: TrayState) -> None:
        self.model.state = state
        self._update_icon()

    def set_timer(self, timer: str) -> None:
        """Update the timer label only; cheaper than a full update."""
        self.model.timer = timer
        if self._icon:
            self._icon.title = f"{APP_TITLE} - {self.model.active_process} {timer}"
            self._icon.menu = self._create_menu()

    def notify(self, message: str, title: str = APP_TITLE) -> None:
        """Show a desktop notification, if the backend supports it."""
        if self._icon and self._icon.HAS_NOTIFICATION:
            self._icon.notify(message, title)
        else:
            logger.info(f"{title}: {message}")

    def _update_icon(self) -> None:
        """Update the tray icon image and menu."""
        if self._icon:
            color = STATE_COLORS.get(self.model.state, STATE_COLORS[TrayState.STARTING])
            self._icon.icon = create_icon_image(color)
            self._icon.menu = self._create_menu()

    def _build_icon(self) -> pystray.Icon:
        color = STATE_COLORS[self.model.state]
        return pystray.Icon(APP_TITLE, create_icon_image(color), APP_TITLE, self._create_menu())

    def start(self) -> None:
        """Start the tray icon in a background thread."""
        if self._icon is not None:
            return

        self._icon = self._build_icon()
        self._thread = threading.Thread(target=self._icon.run, daemon=True)
        self._thread.start()
        logger.info("Tray icon started")

    def stop(self) -> None:
        """Stop the tray icon."""
        if self._icon:
            self._icon.stop()
            self._icon = None
            logger.info("Tray icon stopped")

    def run_blocking(self) -> None:
        """Run the tray icon in the main thread (blocking)."""
        if self._icon is None:
            self._icon = self._build_icon()
        self._icon.run()
