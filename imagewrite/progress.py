"""Progress and ETA tracking for device transfers.

Two layers:
- EtaTracker counts abstract units (chunks) and projects the time left
- TransferProgress counts bytes and combines both into ProgressSnapshot
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from imagewrite.types import ProgressSnapshot

Clock = Callable[[], float]


@dataclass(frozen=True)
class EtaReading:
    """Timing derived after a unit completes.

    Attributes:
        elapsed: Seconds since tracking started.
        eta: Projected seconds until all units complete (0 if unknown).
        rate: Completed units per second (0 if unknown).
    """

    elapsed: float
    eta: float
    rate: float


class EtaTracker:
    """Linear ETA projection over a fixed number of units.

    Timing starts on ``start()`` or on the first ``tick()``, whichever
    comes first.
    """

    def __init__(self, total: int, clock: Clock = time.monotonic) -> None:
        if total < 0:
            raise ValueError(f"total must not be negative, got {total}")
        self.total = total
        self.completed = 0
        self._clock = clock
        self._started_at: float | None = None

    def start(self) -> None:
        """Start timing if not started yet."""
        if self._started_at is None:
            self._started_at = self._clock()

    @property
    def elapsed(self) -> float:
        """Seconds since tracking started."""
        if self._started_at is None:
            return 0.0
        return max(0.0, self._clock() - self._started_at)

    def tick(self, units: int = 1) -> EtaReading:
        """Record completed units and return the updated projection."""
        self.start()
        self.completed = min(self.total, self.completed + units)

        elapsed = self.elapsed
        if self.completed == 0 or elapsed <= 0:
            return EtaReading(elapsed=elapsed, eta=0.0, rate=0.0)

        rate = self.completed / elapsed
        eta = (self.total - self.completed) / rate
        return EtaReading(elapsed=elapsed, eta=max(0.0, eta), rate=rate)


class TransferProgress:
    """Byte-level progress for one transfer session.

    Args:
        length: Total bytes of the transfer.
        chunk_size: Fixed chunk size; one chunk is one ETA unit.
        clock: Monotonic time source.
    """

    def __init__(
        self, length: int, chunk_size: int, clock: Clock = time.monotonic
    ) -> None:
        self.length = length
        self.transferred = 0
        self.eta = EtaTracker(math.ceil(length / chunk_size), clock=clock)
        # Elapsed time at the previous snapshot
        self._last_elapsed = 0.0

    def start(self) -> None:
        self.eta.start()

    def advance(self, delta: int) -> ProgressSnapshot:
        """Account for one completed chunk of ``delta`` bytes.

        Raises:
            ValueError: The chunk would take the transfer past its length.
        """
        if self.transferred + delta > self.length:
            raise ValueError(
                f"Transfer overrun: {self.transferred} + {delta} > {self.length}"
            )
        self.transferred += delta
        reading = self.eta.tick()

        if self.length:
            percentage = self.transferred / self.length * 100
        else:
            percentage = 100.0
        interval = reading.elapsed - self._last_elapsed
        speed = delta / interval if interval > 0 else 0.0
        self._last_elapsed = reading.elapsed

        return ProgressSnapshot(
            percentage=percentage,
            transferred=self.transferred,
            length=self.length,
            remaining=self.length - self.transferred,
            eta=round(reading.eta),
            runtime=reading.elapsed,
            delta=delta,
            speed=speed,
        )


__all__ = ["EtaReading", "EtaTracker", "TransferProgress"]
