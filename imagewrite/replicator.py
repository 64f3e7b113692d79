"""Chunked copy between two open handles."""

import errno
from dataclasses import dataclass
from typing import BinaryIO

from imagewrite.errors import InvalidImageError


@dataclass(frozen=True)
class ChunkResult:
    """Bytes moved by a single chunk copy."""

    bytes_read: int
    bytes_written: int


class ChunkReplicator:
    """Copies chunks from a source handle to a destination handle.

    The replicator owns one buffer of ``chunk_size`` bytes for the whole
    session. It reports what was moved and leaves short reads and writes
    for the caller to judge.

    Args:
        source: Readable binary handle.
        dest: Writable binary handle. Should be unbuffered so ``write``
            reports the bytes the device actually accepted.
        chunk_size: Largest chunk this replicator will copy.
    """

    def __init__(self, source: BinaryIO, dest: BinaryIO, chunk_size: int) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.source = source
        self.dest = dest
        self.chunk_size = chunk_size
        self._buffer = bytearray(chunk_size)

    def copy(self, length: int, position: int | None = None) -> ChunkResult:
        """Copy up to ``length`` bytes.

        Args:
            length: Bytes to copy, at most ``chunk_size``.
            position: Destination offset to write at, or None to write at
                the current position.

        Returns:
            ChunkResult with the bytes read and written by this call.

        Raises:
            InvalidImageError: The destination rejected the write with EINVAL.
            OSError: Any other read or write failure, unchanged.
        """
        if not 0 < length <= self.chunk_size:
            raise ValueError(
                f"length must be in (0, {self.chunk_size}], got {length}"
            )

        view = memoryview(self._buffer)[:length]
        readinto = getattr(self.source, "readinto", None)
        if readinto is not None:
            bytes_read = readinto(view) or 0
        else:
            data = self.source.read(length)
            bytes_read = len(data)
            view[:bytes_read] = data

        if bytes_read == 0:
            return ChunkResult(bytes_read=0, bytes_written=0)

        if position is not None:
            self.dest.seek(position)
        try:
            bytes_written = self.dest.write(view[:bytes_read]) or 0
        except OSError as e:
            if e.errno == errno.EINVAL:
                raise InvalidImageError() from e
            raise

        return ChunkResult(bytes_read=bytes_read, bytes_written=bytes_written)


__all__ = ["ChunkReplicator", "ChunkResult"]
