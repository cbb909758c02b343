"""Shared fixtures for platform_factory unit tests."""

from __future__ import annotations

import pytest

from platform_factory.provisioning.inmemory import InMemoryCloud
from platform_factory.provisioning.readiness import ReadinessVerifier


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def verifier(clock: FakeClock) -> ReadinessVerifier:
    return ReadinessVerifier(clock=clock, sleep=clock.sleep)


@pytest.fixture
def cloud() -> InMemoryCloud:
    return InMemoryCloud()
