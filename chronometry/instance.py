"""Guard against two tray clients sharing one local store."""

import logging
import os
import sys
from pathlib import Path
from typing import IO, Optional

from .config import Config

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "chronometry.lock"


def _try_lock(handle: IO) -> None:
    if sys.platform == "win32":
        import msvcrt

        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(handle: IO) -> None:
    if sys.platform == "win32":
        import msvcrt

        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle, fcntl.LOCK_UN)


class InstanceLock:
    """Advisory lock on a file next to the local database.

    The store is a single SQLite file written by the sync loop, so a second
    client for the same user would race it. The holder's pid is written into
    the file to help when diagnosing a stale lock.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path or Config.get_data_dir() / LOCK_FILE_NAME
        self._handle: Optional[IO] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> bool:
        """Take the lock. Returns False if another process holds it."""
        if self._handle is not None:
            return True

        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+")  # noqa: SIM115
        try:
            _try_lock(handle)
        except OSError:
            handle.close()
            logger.info(f"Instance lock {self.path} is held by another process")
            return False

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        return True

    def release(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            _unlock(handle)
        except OSError as e:
            logger.debug(f"Could not unlock {self.path}: {e}")
        finally:
            handle.close()
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> "InstanceLock":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
