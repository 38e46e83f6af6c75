"""Shared fixtures: a controllable clock, a recording sleep and a clean settings singleton."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from profile_guard.config import reset_settings


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(autouse=True)
def _clean_settings():
    """Reset the settings singleton before and after each test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
