from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of task time in seconds.

    Timers, debounce windows and trial timings all read time through this
    interface so scripted runs can step the task deterministically.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Interactive-session clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


def unix_timestamp() -> float:
    """Seconds since the epoch, stamped on exported events as global time."""

    return time.time()


def utc_date() -> str:
    return time.strftime("%Y-%m-%d", time.gmtime(time.time()))
