# backend/app/core/clock.py
"""
Time oracle for the engine.

Every "outdated" or timestamp decision reads the current instant from a Clock
so tests can pin time and production uses one canonical timezone.
"""

from datetime import datetime, timedelta
import threading
from typing import Optional, Protocol

import pytz

from .config import settings


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current timezone-aware instant in the engine timezone."""
        ...


def engine_timezone() -> pytz.BaseTzInfo:
    return pytz.timezone(settings.engine_timezone)


class SystemClock:
    """Wall clock in the configured engine timezone."""

    def __init__(self, tz: Optional[pytz.BaseTzInfo] = None) -> None:
        self._tz = tz or engine_timezone()

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock:
    """Clock pinned to an explicit instant; used by tests and replays."""

    def __init__(self, instant: datetime, tz: Optional[pytz.BaseTzInfo] = None) -> None:
        self._tz = tz or engine_timezone()
        self._lock = threading.Lock()
        self._instant = self._normalize(instant)

    def _normalize(self, instant: datetime) -> datetime:
        # Naive instants are wall time in the engine timezone.
        if instant.tzinfo is None:
            return self._tz.localize(instant)
        return instant.astimezone(self._tz)

    def now(self) -> datetime:
        with self._lock:
            return self._instant

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._instant = self._normalize(instant)

    def advance(self, delta: timedelta) -> None:
        with self._lock:
            self._instant = self._tz.normalize(self._instant + delta)


_default_clock: Clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency returning the process-wide clock."""
    return _default_clock
