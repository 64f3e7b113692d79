"""Platform hooks around device I/O.

Default implementations of the MountGuard and DevicePreparer protocols:
- NullMountGuard: nothing to suppress, release does nothing
- DenymountGuard: holds off macOS auto-mounting with ``denymount``
- NullDevicePreparer: nothing to prepare
- DiskpartRescanPreparer: makes Windows re-scan its disks via diskpart
"""

import asyncio
import logging
import os
import subprocess
import sys
import tempfile

from imagewrite.errors import DevicePrepareError, MountGuardError
from imagewrite.types import DevicePreparer, MountGuard, ReleaseHandle

logger = logging.getLogger(__name__)

DISKPART_TIMEOUT = 60
DENYMOUNT_EXECUTABLE = "denymount"
DENYMOUNT_STOP_TIMEOUT = 5.0


def _noop() -> None:
    return None


class NullMountGuard:
    """Mount guard for platforms where mounting cannot race verification."""

    async def acquire(self, device_path: str) -> ReleaseHandle:
        logger.debug("No mount guard needed for %s", device_path)
        return _noop


class DenymountGuard:
    """Keep macOS from auto-mounting a disk while it is being read.

    Runs ``denymount <disk>`` for as long as the guard is held, where
    ``<disk>`` is the basename of the device path (e.g. ``disk2``). The
    release handle terminates the process and waits for it to exit.
    """

    def __init__(
        self,
        executable: str = DENYMOUNT_EXECUTABLE,
        stop_timeout: float = DENYMOUNT_STOP_TIMEOUT,
    ) -> None:
        self.executable = executable
        self.stop_timeout = stop_timeout

    def _start(self, device_path: str) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                [self.executable, os.path.basename(device_path)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error("Failed to start %s: %s", self.executable, e)
            raise MountGuardError(device_path, str(e)) from e

    def _stop(self, process: subprocess.Popen, device_path: str) -> None:
        process.terminate()
        try:
            process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("%s did not exit, killing it", self.executable)
            process.kill()
            process.wait()
        logger.debug("Released mount guard on %s", device_path)

    async def acquire(self, device_path: str) -> ReleaseHandle:
        process = await asyncio.to_thread(self._start, device_path)
        logger.debug("Holding mount guard on %s (pid %d)", device_path, process.pid)

        def release() -> None:
            self._stop(process, device_path)

        return release


class NullDevicePreparer:
    """Device preparer for platforms that need no preparation."""

    async def prepare(self, device_path: str) -> None:
        return None


class DiskpartRescanPreparer:
    """Ask Windows to re-scan disks so it drops stale volume state.

    Runs ``diskpart /s <script>`` with a ``rescan`` script before and after
    the transfer.
    """

    def __init__(self, timeout: int = DISKPART_TIMEOUT) -> None:
        self.timeout = timeout

    def _rescan(self, device_path: str) -> None:
        fd, script_path = tempfile.mkstemp(suffix=".txt", prefix="imagewrite-")
        try:
            with os.fdopen(fd, "w") as script:
                script.write("rescan\n")

            result = subprocess.run(
                ["diskpart", "/s", script_path],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise DevicePrepareError(device_path, str(e)) from e
        finally:
            os.unlink(script_path)

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise DevicePrepareError(
                device_path, f"diskpart exited with {result.returncode}: {detail}"
            )

    async def prepare(self, device_path: str) -> None:
        logger.debug("Rescanning disks for %s", device_path)
        await asyncio.to_thread(self._rescan, device_path)


def default_mount_guard(platform: str | None = None) -> MountGuard:
    """Return the mount guard for a platform (defaults to the host)."""
    if platform is None:
        platform = sys.platform
    if platform == "darwin":
        return DenymountGuard()
    return NullMountGuard()


def default_preparer(platform: str | None = None) -> DevicePreparer:
    """Return the device preparer for a platform (defaults to the host)."""
    if platform is None:
        platform = sys.platform
    if platform == "win32":
        return DiskpartRescanPreparer()
    return NullDevicePreparer()


__all__ = [
    "DenymountGuard",
    "DiskpartRescanPreparer",
    "NullDevicePreparer",
    "NullMountGuard",
    "default_mount_guard",
    "default_preparer",
]
