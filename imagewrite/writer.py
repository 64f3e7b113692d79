"""Write pipeline: stream an image onto a raw device.

A run walks through WriteState in order:

    IDLE -> ERASING -> PREPARING -> TRANSFERRING -> FINALIZING -> DONE

and lands in FAILED from any of them. Chunks are written strictly in
offset order; a short read or write stops the run without retrying.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass

from imagewrite.config import DEFAULT_CHUNK_SIZE
from imagewrite.device import erase_mbr, get_raw_device, open_device
from imagewrite.errors import ShortTransferError
from imagewrite.hooks import default_preparer
from imagewrite.progress import Clock, TransferProgress
from imagewrite.replicator import ChunkReplicator
from imagewrite.source import ImageSource, Source, open_source
from imagewrite.types import DevicePreparer, ProgressCallback, WriteState

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Result of a completed write.

    Attributes:
        device_path: Raw device path that was written.
        bytes_written: Number of image bytes written.
        chunks: Number of chunk writes performed.
        elapsed: Seconds spent transferring.
    """

    device_path: str
    bytes_written: int
    chunks: int
    elapsed: float


class WritePipeline:
    """One write of a source onto a device.

    Args:
        source: Image path or readable binary stream.
        device_path: Target device path, resolved to its raw alias.
        length: Bytes to write; required for streams without a length.
        chunk_size: Fixed chunk size for the session.
        preparer: Platform hook run after the MBR erase and after the transfer.
        on_progress: Called with a ProgressSnapshot after every chunk.
        clock: Monotonic time source for progress.
    """

    def __init__(
        self,
        source: Source,
        device_path: str,
        *,
        length: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        preparer: DevicePreparer | None = None,
        on_progress: ProgressCallback | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.source = source
        self.device_path = get_raw_device(device_path)
        self.length = length
        self.chunk_size = chunk_size
        self.preparer = preparer if preparer is not None else default_preparer()
        self.on_progress = on_progress
        self.clock = clock
        self.state = WriteState.IDLE
        self.written = 0
        self.chunks = 0

    def _transition(self, state: WriteState) -> None:
        logger.debug(
            "Write %s: %s -> %s", self.device_path, self.state.value, state.value
        )
        self.state = state

    async def run(self) -> WriteResult:
        """Run the pipeline to completion.

        Returns:
            WriteResult once the device holds the whole image.

        Raises:
            MissingLengthError: Source length unknown; the device is untouched.
            ShortWriteError: The MBR erase was not fully accepted.
            ShortTransferError: A chunk read or write came up short.
            InvalidImageError: The device rejected a chunk with EINVAL.
            DevicePrepareError: The platform preparer failed.
            OSError: Any other device or source I/O failure, unchanged.
        """
        if self.state is not WriteState.IDLE:
            raise RuntimeError(
                f"Write pipeline already ran (state={self.state.value})"
            )

        image: ImageSource | None = None
        try:
            image = open_source(self.source, self.length)
            logger.info(
                "Writing %d bytes to %s in %d byte chunks",
                image.length,
                self.device_path,
                self.chunk_size,
            )

            self._transition(WriteState.ERASING)
            await asyncio.to_thread(erase_mbr, self.device_path)

            self._transition(WriteState.PREPARING)
            await self.preparer.prepare(self.device_path)

            self._transition(WriteState.TRANSFERRING)
            elapsed = await self._transfer(image)

            self._transition(WriteState.FINALIZING)
            await self.preparer.prepare(self.device_path)

            self._transition(WriteState.DONE)
        except Exception as e:
            logger.error(
                "Write to %s failed in %s: %s", self.device_path, self.state.value, e
            )
            self.state = WriteState.FAILED
            raise
        finally:
            if image is not None:
                image.close()

        logger.info(
            "Wrote %d bytes to %s in %.1fs", self.written, self.device_path, elapsed
        )
        return WriteResult(
            device_path=self.device_path,
            bytes_written=self.written,
            chunks=self.chunks,
            elapsed=elapsed,
        )

    async def _transfer(self, image: ImageSource) -> float:
        progress = TransferProgress(image.length, self.chunk_size, clock=self.clock)

        device = await asyncio.to_thread(open_device, self.device_path, writable=True)
        try:
            replicator = ChunkReplicator(image.stream, device, self.chunk_size)
            progress.start()

            while self.written < image.length:
                size = min(self.chunk_size, image.length - self.written)
                result = await asyncio.to_thread(replicator.copy, size, self.written)

                if result.bytes_read != size:
                    raise ShortTransferError(
                        "read", self.written, size, result.bytes_read
                    )
                if result.bytes_written != size:
                    raise ShortTransferError(
                        "write", self.written, size, result.bytes_written
                    )

                self.written += size
                self.chunks += 1
                snapshot = progress.advance(size)
                if self.on_progress is not None:
                    self.on_progress(snapshot)

            await asyncio.to_thread(os.fsync, device.fileno())
        finally:
            await asyncio.to_thread(device.close)

        return progress.eta.elapsed


async def write(
    source: Source,
    device_path: str,
    *,
    length: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    preparer: DevicePreparer | None = None,
    on_progress: ProgressCallback | None = None,
) -> WriteResult:
    """Write an image to a device.

    **NOTICE:** writing to a raw device usually needs root/administrator
    privileges.

    The first 512 bytes of the device are zeroed before any image byte is
    written. If ``source`` is a stream, it is read to exhaustion and must
    be reopened before calling ``check``.

    Args:
        source: Image path or readable binary stream.
        device_path: Target device (e.g., '/dev/sdX', '/dev/disk2').
        length: Bytes to write; needed when it can't be derived from ``source``.
        chunk_size: Bytes written per chunk.
        preparer: Platform device preparer (defaults per platform).
        on_progress: Called with a ProgressSnapshot after every chunk.

    Returns:
        WriteResult with operation details.
    """
    pipeline = WritePipeline(
        source,
        device_path,
        length=length,
        chunk_size=chunk_size,
        preparer=preparer,
        on_progress=on_progress,
    )
    return await pipeline.run()


__all__ = ["WritePipeline", "WriteResult", "write"]
