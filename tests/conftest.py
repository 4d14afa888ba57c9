"""Shared fixtures for the OpenAgency test suite."""

import asyncio
from typing import Optional

import pytest

from openagency.config import AgencyConfig
from openagency.events import EventBus
from openagency.providers import ScriptedProvider
from openagency.scheduling import CancellationToken, Scheduler


class FakeScheduler(Scheduler):
    """Scheduler whose clock only moves when something sleeps.

    Sleeps are recorded and return immediately (after yielding to the event
    loop once), so polling loops run without real delays.
    """

    def __init__(self, start: float = 1000.0):
        self.clock = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.clock

    async def sleep(self, seconds: float, cancel: Optional[CancellationToken] = None) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        self.sleeps.append(seconds)
        self.clock += seconds
        await asyncio.sleep(0)
        if cancel is not None:
            cancel.raise_if_cancelled()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def events():
    return EventBus(history=500)


@pytest.fixture
def config(tmp_path):
    return AgencyConfig(memory_dir=str(tmp_path / "agencies"), api_key="test-key")


@pytest.fixture
def make_provider(scheduler):
    """Build scripted providers that share the fake scheduler."""

    def factory(**kwargs) -> ScriptedProvider:
        kwargs.setdefault("scheduler", scheduler)
        return ScriptedProvider(**kwargs)

    return factory
