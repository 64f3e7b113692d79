"""imagewrite - write disk images to raw block devices and verify them.

This package streams an image file or byte stream onto a block device in
fixed-size chunks, reports progress and ETA along the way, and checks the
result by comparing digests of the image and the device.
"""

from imagewrite.errors import (
    DevicePrepareError,
    ImageWriteError,
    InvalidImageError,
    MissingLengthError,
    MountGuardError,
    ShortTransferError,
    ShortWriteError,
)
from imagewrite.service import FlashResult, flash_image
from imagewrite.types import ProgressSnapshot
from imagewrite.verify import check
from imagewrite.writer import write

__version__ = "0.1.0"
__all__ = [
    "DevicePrepareError",
    "FlashResult",
    "ImageWriteError",
    "InvalidImageError",
    "MissingLengthError",
    "MountGuardError",
    "ProgressSnapshot",
    "ShortTransferError",
    "ShortWriteError",
    "__version__",
    "check",
    "flash_image",
    "write",
]
