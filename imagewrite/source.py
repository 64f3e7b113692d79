"""Image source resolution.

A source is either a path to an image file or an already open binary
stream. Both pipelines need its length before touching the device.
"""

import logging
import os
import stat
from dataclasses import dataclass
from typing import BinaryIO, Union

from imagewrite.errors import MissingLengthError

logger = logging.getLogger(__name__)

Source = Union[str, "os.PathLike[str]", BinaryIO]


@dataclass
class ImageSource:
    """A readable image with a known length.

    Attributes:
        stream: Binary stream positioned at the first image byte.
        length: Number of image bytes to transfer.
        owned: Whether the stream was opened here and must be closed here.
    """

    stream: BinaryIO
    length: int
    owned: bool = False

    def close(self) -> None:
        """Close the stream if it was opened by ``open_source``."""
        if self.owned:
            self.stream.close()


def _stream_length(stream: BinaryIO) -> int | None:
    length = getattr(stream, "length", None)
    if length is not None:
        return int(length)

    try:
        fd = stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None

    info = os.fstat(fd)
    if not stat.S_ISREG(info.st_mode):
        return None
    return info.st_size - stream.tell()


def open_source(source: Source, length: int | None = None) -> ImageSource:
    """Resolve a source into a stream and its length.

    The length comes from, in order: the ``length`` argument, a ``length``
    attribute on the stream, or the size of the regular file behind the
    stream's descriptor.

    Args:
        source: Path to an image file or a readable binary stream.
        length: Explicit number of bytes to read from the source.

    Returns:
        ImageSource ready for reading.

    Raises:
        MissingLengthError: The length cannot be determined.
        OSError: The image file cannot be opened.
    """
    if isinstance(source, (str, os.PathLike)):
        stream = open(source, "rb")
        if length is None:
            length = os.fstat(stream.fileno()).st_size
        logger.debug("Opened image %s (%d bytes)", os.fspath(source), length)
        return ImageSource(stream=stream, length=length, owned=True)

    if length is None:
        length = _stream_length(source)
    if length is None:
        raise MissingLengthError(source)

    return ImageSource(stream=source, length=length)


__all__ = ["ImageSource", "Source", "open_source"]
