"""Display formatting helpers."""

from datetime import datetime
from typing import Optional


def format_duration(seconds: Optional[int]) -> str:
    """Format seconds as ``1h 2m 3s``, dropping leading zero parts."""
    if not seconds or seconds < 0:
        return "0s"
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)

    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_timer_display(seconds: Optional[int]) -> str:
    """Format seconds as ``HH:MM:SS``."""
    seconds = max(0, int(seconds or 0))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_time(value: Optional[datetime]) -> str:
    """Local wall-clock time, ``HH:MM``."""
    if value is None:
        return "--:--"
    return value.astimezone().strftime("%H:%M")
