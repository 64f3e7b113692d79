"""Tests for verify.py - the verify pipeline."""

import asyncio
import io
from unittest.mock import patch

import pytest

from imagewrite.digest import HashlibDigest
from imagewrite.errors import MissingLengthError, ShortTransferError
from imagewrite.types import VerificationResult, VerifyState
from imagewrite.verify import VerifyPipeline, check


class LengthStream(io.BytesIO):
    """Stream carrying its length as an attribute."""

    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.length = len(data)


def make_device(tmp_path, content: bytes) -> str:
    device = tmp_path / "device.img"
    device.write_bytes(content)
    return str(device)


class TestCheck:
    """Tests for check function."""

    @pytest.mark.asyncio
    async def test_identical_bytes(self, tmp_path, mount_guard):
        """Identical device content verifies."""
        data = bytes(range(100))
        device = make_device(tmp_path, data)

        assert await check(device, LengthStream(data), mount_guard=mount_guard)

    @pytest.mark.asyncio
    async def test_one_byte_differs(self, tmp_path, mount_guard):
        """A single differing byte at offset 50 does not verify."""
        data = bytes(range(100))
        corrupted = bytearray(data)
        corrupted[50] ^= 0xFF
        device = make_device(tmp_path, bytes(corrupted))

        matched = await check(device, LengthStream(data), mount_guard=mount_guard)

        assert matched is False
        assert mount_guard.released == 1

    @pytest.mark.asyncio
    async def test_device_larger_than_image(self, tmp_path, mount_guard):
        """Only the image length of the device is compared."""
        data = b"image" * 20
        device = make_device(tmp_path, data + b"\xff" * 4096)

        assert await check(device, LengthStream(data), mount_guard=mount_guard)

    @pytest.mark.asyncio
    async def test_path_source(self, tmp_path, mount_guard):
        """An image path can be verified directly."""
        image = tmp_path / "image.img"
        image.write_bytes(b"\x42" * 1000)
        device = make_device(tmp_path, b"\x42" * 1000)

        assert await check(device, image, mount_guard=mount_guard)

    @pytest.mark.asyncio
    async def test_exhausted_source(self, tmp_path, mount_guard):
        """A stream already consumed by a write cannot be verified."""
        data = b"abc" * 10
        device = make_device(tmp_path, data)
        stream = LengthStream(data)
        stream.read()

        with pytest.raises(ShortTransferError):
            await check(device, stream, mount_guard=mount_guard)
        assert mount_guard.released == 1


class TestVerifyPipeline:
    """Tests for VerifyPipeline."""

    @pytest.mark.asyncio
    async def test_result(self, tmp_path, mount_guard):
        """The result carries both digests."""
        data = b"payload" * 10
        device = make_device(tmp_path, data)

        pipeline = VerifyPipeline(device, LengthStream(data), mount_guard=mount_guard)
        result = await pipeline.run()

        assert result.matched is True
        assert result.source_digest == result.device_digest
        assert result.length == len(data)
        assert result.result is VerificationResult.MATCH
        assert pipeline.state is VerifyState.DONE

    @pytest.mark.asyncio
    async def test_guard_released_once_on_success(self, tmp_path, mount_guard):
        """The mount guard is acquired and released exactly once."""
        device = make_device(tmp_path, b"x" * 10)

        await VerifyPipeline(
            device, LengthStream(b"x" * 10), mount_guard=mount_guard
        ).run()

        assert mount_guard.acquired == [device]
        assert mount_guard.released == 1

    @pytest.mark.asyncio
    async def test_guard_released_once_on_failure(self, tmp_path, mount_guard):
        """The guard is released when hashing fails, then the error surfaces."""
        device = make_device(tmp_path, b"x" * 10)

        class BrokenDigest:
            async def digest(self, stream, expected_length, on_progress=None):
                raise OSError(5, "Input/output error")

        pipeline = VerifyPipeline(
            device,
            LengthStream(b"x" * 10),
            digest=BrokenDigest(),
            mount_guard=mount_guard,
        )
        with pytest.raises(OSError) as exc_info:
            await pipeline.run()

        assert exc_info.value.errno == 5
        assert mount_guard.released == 1
        assert pipeline.state is VerifyState.FAILED

    @pytest.mark.asyncio
    async def test_guard_released_when_device_missing(self, tmp_path, mount_guard):
        """Failing to open the device still releases the guard."""
        pipeline = VerifyPipeline(
            str(tmp_path / "missing"),
            LengthStream(b"x"),
            mount_guard=mount_guard,
        )
        with pytest.raises(FileNotFoundError):
            await pipeline.run()

        assert mount_guard.released == 1

    @pytest.mark.asyncio
    async def test_short_device(self, tmp_path, mount_guard):
        """A device smaller than the image fails with ShortTransferError."""
        device = make_device(tmp_path, b"x" * 5)

        with pytest.raises(ShortTransferError):
            await VerifyPipeline(
                device, LengthStream(b"x" * 10), mount_guard=mount_guard
            ).run()
        assert mount_guard.released == 1

    @pytest.mark.asyncio
    async def test_missing_length(self, tmp_path, mount_guard):
        """An unsized stream fails before the guard is taken."""
        device = make_device(tmp_path, b"x")

        pipeline = VerifyPipeline(device, io.BytesIO(b"x"), mount_guard=mount_guard)
        with pytest.raises(MissingLengthError):
            await pipeline.run()

        assert mount_guard.acquired == []
        assert pipeline.state is VerifyState.FAILED

    @pytest.mark.asyncio
    async def test_digests_run_concurrently(self, tmp_path, mount_guard):
        """Both digests are in flight before either finishes."""
        device = make_device(tmp_path, b"x" * 10)
        started = 0
        both_started = asyncio.Event()

        class RendezvousDigest:
            async def digest(self, stream, expected_length, on_progress=None):
                nonlocal started
                started += 1
                if started == 2:
                    both_started.set()
                await asyncio.wait_for(both_started.wait(), timeout=5)
                return "same"

        result = await VerifyPipeline(
            device,
            LengthStream(b"x" * 10),
            digest=RendezvousDigest(),
            mount_guard=mount_guard,
        ).run()

        assert result.matched is True

    @pytest.mark.asyncio
    async def test_source_failure_stops_device_digest(
        self, tmp_path, mount_guard, snapshots
    ):
        """A source failing at byte 0 does not drag the whole device through."""
        chunk = 64 * 1024
        device = make_device(tmp_path, b"\x00" * (64 * chunk))

        class FailingSource(LengthStream):
            def read(self, size=-1):
                raise OSError(5, "Input/output error")

        pipeline = VerifyPipeline(
            device,
            FailingSource(b"\x00" * (64 * chunk)),
            digest=HashlibDigest(chunk_size=chunk),
            mount_guard=mount_guard,
            on_progress=snapshots.append,
        )
        with pytest.raises(OSError) as exc_info:
            await pipeline.run()

        assert exc_info.value.errno == 5
        assert len(snapshots) < 10
        assert mount_guard.released == 1
        assert pipeline.state is VerifyState.FAILED

    @pytest.mark.asyncio
    async def test_device_failure_stops_source_digest(self, tmp_path, mount_guard):
        """A device ending early stops the source digest before it finishes."""
        chunk = 1024
        device = make_device(tmp_path, b"x" * chunk)
        reads = []

        class CountingSource(LengthStream):
            def read(self, size=-1):
                reads.append(size)
                return super().read(size)

        with pytest.raises(ShortTransferError):
            await VerifyPipeline(
                device,
                CountingSource(b"x" * (256 * chunk)),
                digest=HashlibDigest(chunk_size=chunk),
                mount_guard=mount_guard,
            ).run()

        assert len(reads) < 256

    @pytest.mark.asyncio
    async def test_progress_from_both_sides(self, tmp_path, mount_guard, snapshots):
        """Snapshots from the source and device digests are both emitted."""
        data = b"y" * 4096
        device = make_device(tmp_path, data)

        await VerifyPipeline(
            device,
            LengthStream(data),
            digest=HashlibDigest(chunk_size=1024),
            mount_guard=mount_guard,
            on_progress=snapshots.append,
        ).run()

        assert len(snapshots) == 8
        assert all(s.length == 4096 for s in snapshots)
        assert sum(1 for s in snapshots if s.transferred == 4096) == 2

    @pytest.mark.asyncio
    async def test_reads_raw_device(self, tmp_path, mount_guard):
        """The device is read through its raw alias."""
        data = b"z" * 8
        device = make_device(tmp_path, data)
        opened = []

        def fake_raw(path):
            opened.append(path)
            return path

        with patch("imagewrite.verify.get_raw_device", side_effect=fake_raw):
            await check(device, LengthStream(data), mount_guard=mount_guard)

        assert opened == [device]
