"""Connectivity monitor - polls the server and reports online/offline changes."""

import logging
import threading
from typing import Callable, Optional

__all__ = ["ConnectivityMonitor"]

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Poll ``probe`` on an interval and fire ``on_change(is_online)`` on transitions.

    The first poll only establishes the initial state; callbacks fire when it
    changes after that.
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        on_change: Optional[Callable[[bool], None]] = None,
        interval: int = 10,
    ):
        self._probe = probe
        self._on_change = on_change
        self.interval = interval
        self._online: Optional[bool] = None  # None = unknown
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_online(self) -> bool:
        return bool(self._online)

    def check(self) -> bool:
        """Probe once, fire the callback if the state changed, return the state."""
        try:
            online = bool(self._probe())
        except Exception:
            logger.exception("Connectivity probe failed")
            online = False

        previous = self._online
        self._online = online
        if previous is not None and previous != online:
            status = "online" if online else "offline"
            logger.info(f"Connectivity change detected - {status}")
            self._safe_call(online)
        return online

    def _safe_call(self, online: bool) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(online)
        except Exception:
            logger.exception("Error in connectivity callback")

    def _run(self) -> None:
        while not self._stop.is_set():
            self.check()
            self._stop.wait(self.interval)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="connectivity-monitor", daemon=True
        )
        self._thread.start()
        logger.debug(f"Connectivity monitor started (interval: {self.interval}s)")

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
