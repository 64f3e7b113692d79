"""Verify pipeline: compare a device against its source image.

A run walks through VerifyState in order:

    IDLE -> GUARD_ACQUIRED -> HASHING -> COMPARING -> DONE

and lands in FAILED from any of them. The source and device digests are
computed concurrently; when one fails, the other stops before its next
read. The mount guard is released exactly once, whether hashing succeeds
or fails.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import BinaryIO

from imagewrite.device import get_raw_device, open_device
from imagewrite.digest import HashlibDigest
from imagewrite.hooks import default_mount_guard
from imagewrite.source import ImageSource, Source, open_source
from imagewrite.types import (
    DigestService,
    MountGuard,
    ProgressCallback,
    VerificationResult,
    VerifyState,
)

logger = logging.getLogger(__name__)


class _HashingStopped(Exception):
    """The other digest failed, so this one stopped reading."""


class _StoppableReader:
    """Stream wrapper whose reads fail once ``stop`` is set."""

    def __init__(self, stream: BinaryIO, stop: threading.Event) -> None:
        self._stream = stream
        self._stop = stop

    def read(self, size: int = -1) -> bytes:
        if self._stop.is_set():
            raise _HashingStopped()
        return self._stream.read(size)

    def readinto(self, buffer) -> int | None:
        if self._stop.is_set():
            raise _HashingStopped()
        return self._stream.readinto(buffer)

    def __getattr__(self, name: str):
        return getattr(self._stream, name)


@dataclass
class VerifyResult:
    """Result of a completed verification.

    Attributes:
        matched: Whether the device holds the same bytes as the source.
        source_digest: Digest of the source image.
        device_digest: Digest of the same number of bytes read from the device.
        length: Number of bytes compared.
    """

    matched: bool
    source_digest: str
    device_digest: str
    length: int

    @property
    def result(self) -> VerificationResult:
        if self.matched:
            return VerificationResult.MATCH
        return VerificationResult.MISMATCH


class VerifyPipeline:
    """One verification of a device against a fresh source.

    Args:
        device_path: Device to verify, resolved to its raw alias.
        source: Image path or a fresh readable binary stream.
        length: Bytes to compare; required for streams without a length.
        digest: Digest service used for both sides.
        mount_guard: Guard held while the device is read.
        on_progress: Called with snapshots from either digest.
    """

    def __init__(
        self,
        device_path: str,
        source: Source,
        *,
        length: int | None = None,
        digest: DigestService | None = None,
        mount_guard: MountGuard | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.device_path = device_path
        self.source = source
        self.length = length
        self.digest = digest if digest is not None else HashlibDigest()
        self.mount_guard = (
            mount_guard if mount_guard is not None else default_mount_guard()
        )
        self.on_progress = on_progress
        self.state = VerifyState.IDLE

    def _transition(self, state: VerifyState) -> None:
        logger.debug(
            "Verify %s: %s -> %s", self.device_path, self.state.value, state.value
        )
        self.state = state

    async def run(self) -> VerifyResult:
        """Run the pipeline to completion.

        Returns:
            VerifyResult; a mismatch is a result, not an error.

        Raises:
            MissingLengthError: Source length unknown.
            ShortTransferError: Source or device ended before the length.
            OSError: Any source or device I/O failure, unchanged.
        """
        if self.state is not VerifyState.IDLE:
            raise RuntimeError(
                f"Verify pipeline already ran (state={self.state.value})"
            )

        image: ImageSource | None = None
        try:
            image = open_source(self.source, self.length)

            release = await self.mount_guard.acquire(self.device_path)
            self._transition(VerifyState.GUARD_ACQUIRED)
            try:
                self._transition(VerifyState.HASHING)
                source_digest, device_digest = await self._hash(image)
            finally:
                release()

            self._transition(VerifyState.COMPARING)
            matched = source_digest == device_digest
            self._transition(VerifyState.DONE)
        except Exception as e:
            logger.error(
                "Verify of %s failed in %s: %s", self.device_path, self.state.value, e
            )
            self.state = VerifyState.FAILED
            raise
        finally:
            if image is not None:
                image.close()

        if matched:
            logger.info("Verification of %s passed", self.device_path)
        else:
            logger.warning(
                "Verification of %s FAILED: source=%s, device=%s",
                self.device_path,
                source_digest[:16],
                device_digest[:16],
            )

        return VerifyResult(
            matched=matched,
            source_digest=source_digest,
            device_digest=device_digest,
            length=image.length,
        )

    async def _hash(self, image: ImageSource) -> tuple[str, str]:
        raw_path = get_raw_device(self.device_path)
        device = await asyncio.to_thread(open_device, raw_path)
        stop = threading.Event()
        tasks = [
            asyncio.ensure_future(
                self.digest.digest(
                    _StoppableReader(stream, stop), image.length, self.on_progress
                )
            )
            for stream in (image.stream, device)
        ]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            # The survivor stops at its next read; no read may outlive the handle
            stop.set()
            await asyncio.gather(*tasks, return_exceptions=True)
            await asyncio.to_thread(device.close)

        for task in tasks:
            error = task.exception()
            if error is not None and not isinstance(error, _HashingStopped):
                raise error
        source_digest, device_digest = (task.result() for task in tasks)
        return source_digest, device_digest


async def check(
    device_path: str,
    source: Source,
    *,
    length: int | None = None,
    digest: DigestService | None = None,
    mount_guard: MountGuard | None = None,
    on_progress: ProgressCallback | None = None,
) -> bool:
    """Check that a device holds the bytes of an image.

    The source must be fresh: a stream already consumed by ``write`` yields
    no data. Pass the image path or reopen the stream.

    Args:
        device_path: Device to verify (e.g., '/dev/sdX').
        source: Image path or readable binary stream.
        length: Bytes to compare; needed when it can't be derived from ``source``.
        digest: Digest service (defaults to SHA-256).
        mount_guard: Mount guard (defaults per platform).
        on_progress: Called with snapshots from either digest.

    Returns:
        True if the device matches the image, False otherwise.
    """
    pipeline = VerifyPipeline(
        device_path,
        source,
        length=length,
        digest=digest,
        mount_guard=mount_guard,
        on_progress=on_progress,
    )
    result = await pipeline.run()
    return result.matched


__all__ = ["VerifyPipeline", "VerifyResult", "check"]
