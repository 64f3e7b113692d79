"""Shared fixtures for imagewrite tests."""

import pytest

from imagewrite.types import ProgressSnapshot


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingPreparer:
    """Device preparer that records the devices it was called with."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def prepare(self, device_path: str) -> None:
        self.calls.append(device_path)


class RecordingMountGuard:
    """Mount guard that counts acquisitions and releases."""

    def __init__(self) -> None:
        self.acquired: list[str] = []
        self.released = 0

    async def acquire(self, device_path: str):
        self.acquired.append(device_path)

        def release() -> None:
            self.released += 1

        return release


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def preparer() -> RecordingPreparer:
    return RecordingPreparer()


@pytest.fixture
def mount_guard() -> RecordingMountGuard:
    return RecordingMountGuard()


@pytest.fixture
def snapshots() -> list[ProgressSnapshot]:
    return []
