"""Streaming digests for verification.

HashlibDigest is the default DigestService: it reads exactly the
requested number of bytes off the event loop and reports progress with
the same snapshot shape as the write pipeline.
"""

import asyncio
import hashlib
import logging
from typing import BinaryIO

from imagewrite.config import DEFAULT_CHUNK_SIZE
from imagewrite.errors import ShortTransferError
from imagewrite.progress import TransferProgress
from imagewrite.types import ProgressCallback

logger = logging.getLogger(__name__)


class HashlibDigest:
    """Digest service backed by ``hashlib``.

    Args:
        algorithm: Any name accepted by ``hashlib.new``.
        chunk_size: Bytes read per chunk.
    """

    def __init__(
        self, algorithm: str = "sha256", chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> None:
        hashlib.new(algorithm)
        self.algorithm = algorithm
        self.chunk_size = chunk_size

    async def digest(
        self,
        stream: BinaryIO,
        expected_length: int,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Hash exactly ``expected_length`` bytes of ``stream``.

        Returns:
            Hex digest string.

        Raises:
            ShortTransferError: The stream ended early.
        """
        hasher = hashlib.new(self.algorithm)
        progress = TransferProgress(expected_length, self.chunk_size)
        progress.start()

        while progress.transferred < expected_length:
            read_size = min(self.chunk_size, expected_length - progress.transferred)
            chunk = await asyncio.to_thread(stream.read, read_size)
            if not chunk:
                raise ShortTransferError(
                    "read", progress.transferred, read_size, 0
                )

            hasher.update(chunk)
            snapshot = progress.advance(len(chunk))
            if on_progress is not None:
                on_progress(snapshot)

        value = hasher.hexdigest()
        logger.debug(
            "%s over %d bytes: %s", self.algorithm, expected_length, value[:16]
        )
        return value


__all__ = ["HashlibDigest"]
