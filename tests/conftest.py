"""
Shared fixtures.
"""

from datetime import date
from typing import Callable, List

import pytest

from app.conversation.session_store import SessionStore
from fakes import (
    TODAY,
    ManualClock,
    ManualDateTimeClock,
    RecordingNotifier,
    build_flight,
    comparison_pair,
)


@pytest.fixture
def make_flight():
    return build_flight


@pytest.fixture
def comparison_flights():
    """A $350 direct and a $280 one-stop flight on the same route."""
    return comparison_pair()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def dt_clock():
    return ManualDateTimeClock()


@pytest.fixture
def sleeps():
    """Recording replacement for asyncio.sleep."""
    recorded: List[float] = []

    async def fake_sleep(delay: float) -> None:
        recorded.append(delay)

    fake_sleep.calls = recorded
    return fake_sleep


@pytest.fixture
def session_store(dt_clock):
    return SessionStore(ttl_minutes=60, max_history=20, context_window=5, clock=dt_clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def today() -> Callable[[], date]:
    return lambda: TODAY
