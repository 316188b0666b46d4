from datetime import datetime, timedelta, timezone

import pytest
import pytz

from app.core.clock import FixedClock, SystemClock
from app.core.config import Settings


def test_fixed_clock_attaches_engine_timezone_to_naive_instants() -> None:
    clock = FixedClock(datetime(2025, 1, 1, 12, 0), tz=pytz.UTC)

    assert clock.now() == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_fixed_clock_localizes_naive_wall_time() -> None:
    new_york = pytz.timezone("America/New_York")
    clock = FixedClock(datetime(2025, 7, 1, 9, 0), tz=new_york)

    now = clock.now()
    assert now.utcoffset() == timedelta(hours=-4)
    assert now == datetime(2025, 7, 1, 13, 0, tzinfo=timezone.utc)


def test_fixed_clock_converts_to_configured_timezone() -> None:
    kolkata = pytz.timezone("Asia/Kolkata")
    clock = FixedClock(datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc), tz=kolkata)

    now = clock.now()
    assert now.tzinfo.zone == "Asia/Kolkata"
    assert (now.hour, now.minute) == (5, 30)


def test_fixed_clock_set_and_advance() -> None:
    clock = FixedClock(datetime(2025, 1, 1, tzinfo=timezone.utc), tz=pytz.UTC)
    clock.advance(timedelta(hours=2))
    assert clock.now().hour == 2

    clock.set(datetime(2026, 6, 1, tzinfo=timezone.utc))
    assert clock.now().year == 2026


def test_advance_across_dst_keeps_offset_current() -> None:
    new_york = pytz.timezone("America/New_York")
    clock = FixedClock(datetime(2025, 3, 8, 12, 0), tz=new_york)
    clock.advance(timedelta(days=1))

    assert clock.now().utcoffset() == timedelta(hours=-4)


def test_system_clock_is_timezone_aware() -> None:
    assert SystemClock(tz=pytz.UTC).now().tzinfo is not None


def test_settings_reject_unknown_timezone() -> None:
    with pytest.raises(ValueError):
        Settings(engine_timezone="Mars/Olympus_Mons")
