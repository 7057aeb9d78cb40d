import asyncio
import pytest
from datetime import datetime, timezone, timedelta

import scheduler


def test_seconds_until_next_midnight():
    assert scheduler.seconds_until_next_midnight(datetime(2025, 3, 1, 23, 0, 0)) == 3600
    assert scheduler.seconds_until_next_midnight(datetime(2025, 3, 1, 0, 0, 0)) == 86400
    assert scheduler.seconds_until_next_midnight(datetime(2025, 12, 31, 23, 59, 30)) == 30


def test_seconds_until_next_midnight_keeps_timezone():
    tz = timezone(timedelta(hours=2))
    assert scheduler.seconds_until_next_midnight(datetime(2025, 3, 1, 12, 0, tzinfo=tz)) == 43200


@pytest.fixture
def fake_sleep(monkeypatch):
    """Record sleep delays; cancel the loop on the third sleep."""
    sleeps = []

    async def _sleep(delay):
        sleeps.append(delay)
        if len(sleeps) >= 3:
            raise asyncio.CancelledError()

    monkeypatch.setattr(scheduler.asyncio, "sleep", _sleep)
    return sleeps


def test_loop_rearms_after_every_run(fake_sleep):
    calls = []

    asyncio.run(scheduler.daily_reduction_loop(
        lambda: calls.append("run"),
        clock=lambda: datetime(2025, 3, 1, 23, 0, 0)
    ))

    expected = 3600 + scheduler.MIDNIGHT_GRACE_SECONDS
    assert fake_sleep == [expected, expected, expected]
    assert calls == ["run", "run"]


def test_loop_retries_failed_reduction(fake_sleep):
    calls = []

    def run_reduction():
        calls.append("run")
        if len(calls) == 1:
            raise RuntimeError("database is locked")

    asyncio.run(scheduler.daily_reduction_loop(
        run_reduction,
        clock=lambda: datetime(2025, 3, 1, 23, 0, 0)
    ))

    expected = 3600 + scheduler.MIDNIGHT_GRACE_SECONDS
    assert fake_sleep == [expected, scheduler.RETRY_DELAY_SECONDS, expected]
    assert calls == ["run", "run"]
