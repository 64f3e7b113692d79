"""Raw device access.

This module handles the device-level primitives used by both pipelines:
- Resolve a device path to its fastest raw-access alias
- Open a device unbuffered (and synchronously for writing)
- Erase the MBR before an image is written

See http://superuser.com/questions/631592 for why /dev/rdiskN is preferred
over /dev/diskN on macOS.
"""

import io
import logging
import os
import re
import sys

from imagewrite.errors import ShortWriteError

logger = logging.getLogger(__name__)

# Size of the boot sector cleared before writing
MBR_SIZE = 512

# /dev/disk2, /dev/disk2s1 (macOS buffered block devices)
_DARWIN_DISK_PATTERN = re.compile(r"^/dev/disk(\d+(?:s\d+)*)$")


def get_raw_device(device_path: str, platform: str | None = None) -> str:
    """Map a device path to its raw (unbuffered) alias.

    Only macOS exposes such an alias: /dev/diskN becomes /dev/rdiskN.
    Every other path, including one that is already raw, is returned
    unchanged.

    Args:
        device_path: Path to the device.
        platform: Platform name as in ``sys.platform`` (defaults to the host).

    Returns:
        Path to use for device I/O.
    """
    if platform is None:
        platform = sys.platform

    if platform != "darwin":
        return device_path

    match = _DARWIN_DISK_PATTERN.match(device_path)
    if match is None:
        return device_path

    return f"/dev/rdisk{match.group(1)}"


def _sync_opener(path: str, flags: int) -> int:
    return os.open(path, flags | getattr(os, "O_SYNC", 0))


def open_device(device_path: str, *, writable: bool = False) -> io.FileIO:
    """Open a device without userspace buffering.

    Writable handles are opened read+write without truncation and with
    O_SYNC where the platform has it.

    Args:
        device_path: Already resolved device path.
        writable: Whether the handle will be written to.

    Returns:
        Unbuffered binary handle whose ``write`` reports the bytes accepted.
    """
    if writable:
        return open(device_path, "r+b", buffering=0, opener=_sync_opener)
    return open(device_path, "rb", buffering=0)


def erase_mbr(device_path: str) -> None:
    """Overwrite the first 512 bytes of a device with zeros.

    This destroys any boot sector or partition table so the OS does not
    recognize a stale filesystem while the new image is written.

    Args:
        device_path: Already resolved device path.

    Raises:
        ShortWriteError: The device accepted fewer than 512 bytes.
        OSError: Opening, writing or closing the device failed.
    """
    logger.debug("Erasing MBR of %s", device_path)

    with open_device(device_path, writable=True) as device:
        device.seek(0)
        written = device.write(bytes(MBR_SIZE)) or 0
        if written != MBR_SIZE:
            logger.error(
                "Short MBR erase on %s: %d of %d bytes", device_path, written, MBR_SIZE
            )
            raise ShortWriteError(device_path, written, MBR_SIZE)

    logger.info("Erased MBR of %s", device_path)


__all__ = [
    "MBR_SIZE",
    "erase_mbr",
    "get_raw_device",
    "open_device",
]
