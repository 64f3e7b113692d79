"""Shared type definitions for imagewrite.

This module contains enums, value objects and collaborator protocols shared
across the pipelines to avoid circular imports.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Protocol


class WriteState(str, Enum):
    """State of a write pipeline run."""

    IDLE = "idle"
    ERASING = "erasing"
    PREPARING = "preparing"
    TRANSFERRING = "transferring"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class VerifyState(str, Enum):
    """State of a verify pipeline run."""

    IDLE = "idle"
    GUARD_ACQUIRED = "guard-acquired"
    HASHING = "hashing"
    COMPARING = "comparing"
    DONE = "done"
    FAILED = "failed"


class VerificationResult(str, Enum):
    """Result of post-write verification."""

    MATCH = "match"
    MISMATCH = "mismatch"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Progress of a transfer after one chunk.

    Attributes:
        percentage: Completed share of the transfer (0-100).
        transferred: Bytes transferred so far.
        length: Total bytes of the transfer.
        remaining: Bytes still to transfer.
        eta: Estimated seconds left (0 while unavailable).
        runtime: Seconds elapsed since the transfer started.
        delta: Bytes transferred by the chunk that produced this snapshot.
        speed: Throughput of this chunk in bytes per second (0 if unknown).
    """

    percentage: float
    transferred: int
    length: int
    remaining: int
    eta: int
    runtime: float
    delta: int
    speed: float


ProgressCallback = Callable[[ProgressSnapshot], None]

# Releases a mount guard. Must be called exactly once.
ReleaseHandle = Callable[[], None]


class DigestService(Protocol):
    """Computes a digest over exactly ``expected_length`` bytes of a stream."""

    def digest(
        self,
        stream: BinaryIO,
        expected_length: int,
        on_progress: ProgressCallback | None = None,
    ) -> Awaitable[str]: ...


class MountGuard(Protocol):
    """Suppresses automatic mounting of a device while held."""

    def acquire(self, device_path: str) -> Awaitable[ReleaseHandle]: ...


class DevicePreparer(Protocol):
    """Platform hook run before and after a device transfer."""

    def prepare(self, device_path: str) -> Awaitable[None]: ...


__all__ = [
    "DevicePreparer",
    "DigestService",
    "MountGuard",
    "ProgressCallback",
    "ProgressSnapshot",
    "ReleaseHandle",
    "VerificationResult",
    "VerifyState",
    "WriteState",
]
