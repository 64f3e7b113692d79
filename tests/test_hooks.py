"""Tests for hooks.py - mount guards and device preparers."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from imagewrite.errors import DevicePrepareError, MountGuardError
from imagewrite.hooks import (
    DenymountGuard,
    DiskpartRescanPreparer,
    NullDevicePreparer,
    NullMountGuard,
    default_mount_guard,
    default_preparer,
)


class TestNullHooks:
    """Tests for the no-op hooks."""

    @pytest.mark.asyncio
    async def test_null_mount_guard(self):
        """The null guard returns a callable that does nothing."""
        release = await NullMountGuard().acquire("/dev/sdb")

        assert release() is None

    @pytest.mark.asyncio
    async def test_null_preparer(self):
        """The null preparer does nothing."""
        assert await NullDevicePreparer().prepare("/dev/sdb") is None


class TestDefaults:
    """Tests for platform defaults."""

    def test_default_mount_guard_macos(self):
        """macOS holds off auto-mounting with denymount."""
        assert isinstance(default_mount_guard("darwin"), DenymountGuard)

    def test_default_mount_guard_others(self):
        """Other platforms get the null guard."""
        for platform in ("linux", "win32"):
            assert isinstance(default_mount_guard(platform), NullMountGuard)

    def test_default_preparer_windows(self):
        """Windows rescans disks."""
        assert isinstance(default_preparer("win32"), DiskpartRescanPreparer)

    def test_default_preparer_posix(self):
        """POSIX platforms need no preparation."""
        assert isinstance(default_preparer("linux"), NullDevicePreparer)
        assert isinstance(default_preparer("darwin"), NullDevicePreparer)


class TestDiskpartRescanPreparer:
    """Tests for DiskpartRescanPreparer."""

    @pytest.mark.asyncio
    async def test_runs_rescan_script(self):
        """diskpart is run with a script containing 'rescan'."""
        scripts = []

        def fake_run(cmd, **kwargs):
            with open(cmd[2]) as f:
                scripts.append(f.read())
            return MagicMock(returncode=0, stdout="", stderr="")

        with patch("imagewrite.hooks.subprocess.run", side_effect=fake_run) as run:
            await DiskpartRescanPreparer().prepare(r"\\.\PhysicalDrive1")

        cmd = run.call_args.args[0]
        assert cmd[:2] == ["diskpart", "/s"]
        assert scripts == ["rescan\n"]

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        """A failing diskpart raises DevicePrepareError."""
        result = MagicMock(returncode=1, stdout="", stderr="access denied")

        with patch("imagewrite.hooks.subprocess.run", return_value=result):
            with pytest.raises(DevicePrepareError) as exc_info:
                await DiskpartRescanPreparer().prepare("drive")

        assert "access denied" in exc_info.value.message
        assert exc_info.value.error_code == "DEVICE_PREPARE_FAILED"

    @pytest.mark.asyncio
    async def test_missing_diskpart(self):
        """A missing diskpart binary raises DevicePrepareError."""
        with patch(
            "imagewrite.hooks.subprocess.run", side_effect=FileNotFoundError("diskpart")
        ):
            with pytest.raises(DevicePrepareError):
                await DiskpartRescanPreparer().prepare("drive")

    @pytest.mark.asyncio
    async def test_timeout(self):
        """A hung diskpart raises DevicePrepareError."""
        with patch(
            "imagewrite.hooks.subprocess.run",
            side_effect=subprocess.TimeoutExpired("diskpart", 1),
        ):
            with pytest.raises(DevicePrepareError):
                await DiskpartRescanPreparer(timeout=1).prepare("drive")


class TestDenymountGuard:
    """Tests for DenymountGuard."""

    @pytest.mark.asyncio
    async def test_runs_denymount_on_disk_name(self):
        """denymount is started with the basename of the device."""
        process = MagicMock(pid=4242)

        with patch(
            "imagewrite.hooks.subprocess.Popen", return_value=process
        ) as popen:
            release = await DenymountGuard().acquire("/dev/disk2")

        assert popen.call_args.args[0] == ["denymount", "disk2"]
        process.terminate.assert_not_called()

        release()

        process.terminate.assert_called_once_with()
        process.wait.assert_called_once_with(timeout=5.0)

    @pytest.mark.asyncio
    async def test_release_kills_stuck_process(self):
        """A denymount that ignores terminate is killed."""
        process = MagicMock(pid=4242)
        process.wait.side_effect = [subprocess.TimeoutExpired("denymount", 1), 0]

        with patch("imagewrite.hooks.subprocess.Popen", return_value=process):
            release = await DenymountGuard(stop_timeout=1).acquire("/dev/disk3")
        release()

        process.kill.assert_called_once_with()
        assert process.wait.call_count == 2

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        """A missing denymount binary raises MountGuardError."""
        with patch(
            "imagewrite.hooks.subprocess.Popen",
            side_effect=FileNotFoundError("denymount"),
        ):
            with pytest.raises(MountGuardError) as exc_info:
                await DenymountGuard().acquire("/dev/disk2")

        assert exc_info.value.error_code == "MOUNT_GUARD_FAILED"
        assert "/dev/disk2" in exc_info.value.message
