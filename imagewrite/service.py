"""Flash service: write an image file to a device and verify it.

This is the synchronous entry point used by the CLI. It:
1. Writes the image with the write pipeline
2. Reopens the image and verifies the device with the verify pipeline
3. Folds every outcome into a FlashResult instead of raising
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from imagewrite.config import Settings, get_settings
from imagewrite.digest import HashlibDigest
from imagewrite.errors import ImageWriteError
from imagewrite.types import (
    DevicePreparer,
    MountGuard,
    ProgressCallback,
    VerificationResult,
)
from imagewrite.verify import VerifyPipeline
from imagewrite.writer import WritePipeline

logger = logging.getLogger(__name__)


@dataclass
class FlashResult:
    """Result of a flash operation.

    Attributes:
        success: Whether the image was written (and verified, if requested).
        image_path: Path to the flashed image.
        device_path: Raw device path that was written.
        bytes_written: Number of bytes written.
        verification_result: Result of verification.
        source_digest: Digest of the image (if verified).
        device_digest: Digest read back from the device (if verified).
        error_message: Error message if the flash failed.
        error_code: Error code if the flash failed.
    """

    success: bool
    image_path: str
    device_path: str
    bytes_written: int
    verification_result: VerificationResult
    source_digest: str | None = None
    device_digest: str | None = None
    error_message: str | None = None
    error_code: str | None = None


def _failed_result(
    image_path: Path,
    device_path: str,
    error: ImageWriteError | OSError,
    bytes_written: int = 0,
) -> FlashResult:
    """Fold a flash error into a failed FlashResult."""
    if isinstance(error, ImageWriteError):
        logger.error("Flash failed: %s", error.message)
        message, code = error.message, error.error_code
    elif isinstance(error, PermissionError):
        logger.error("Permission denied on %s: %s", device_path, error)
        message = (
            f"Permission denied on device: {device_path}. "
            "Try running with elevated privileges."
        )
        code = "PERMISSION_DENIED"
    else:
        logger.error("I/O error flashing %s: %s", device_path, error)
        message, code = f"I/O error on {device_path}: {error}", "IO_ERROR"

    return FlashResult(
        success=False,
        image_path=str(image_path),
        device_path=device_path,
        bytes_written=bytes_written,
        verification_result=VerificationResult.SKIPPED,
        error_message=message,
        error_code=code,
    )


async def _flash(
    image_path: Path,
    device_path: str,
    settings: Settings,
    verify: bool,
    on_progress: ProgressCallback | None,
    on_verify_progress: ProgressCallback | None,
    preparer: DevicePreparer | None,
    mount_guard: MountGuard | None,
) -> FlashResult:
    writer = WritePipeline(
        image_path,
        device_path,
        chunk_size=settings.chunk_size,
        preparer=preparer,
        on_progress=on_progress,
    )
    write_result = await writer.run()

    if not verify:
        return FlashResult(
            success=True,
            image_path=str(image_path),
            device_path=write_result.device_path,
            bytes_written=write_result.bytes_written,
            verification_result=VerificationResult.SKIPPED,
        )

    # The write consumed its stream; the verifier opens the image again
    verifier = VerifyPipeline(
        device_path,
        image_path,
        digest=HashlibDigest(settings.digest_algorithm, settings.digest_chunk_size),
        mount_guard=mount_guard,
        on_progress=on_verify_progress,
    )
    try:
        verify_result = await verifier.run()
    except (ImageWriteError, OSError) as e:
        return _failed_result(
            image_path, write_result.device_path, e, write_result.bytes_written
        )

    result = FlashResult(
        success=verify_result.matched,
        image_path=str(image_path),
        device_path=write_result.device_path,
        bytes_written=write_result.bytes_written,
        verification_result=verify_result.result,
        source_digest=verify_result.source_digest,
        device_digest=verify_result.device_digest,
    )
    if not verify_result.matched:
        result.error_message = (
            f"Verification failed for {device_path}. "
            f"Expected: {verify_result.source_digest[:16]}..., "
            f"Got: {verify_result.device_digest[:16]}... "
            "The card may be defective."
        )
        result.error_code = "VERIFICATION_MISMATCH"
    return result


def flash_image(
    image_path: str | Path,
    device_path: str,
    *,
    settings: Settings | None = None,
    verify: bool | None = None,
    on_progress: ProgressCallback | None = None,
    on_verify_progress: ProgressCallback | None = None,
    preparer: DevicePreparer | None = None,
    mount_guard: MountGuard | None = None,
) -> FlashResult:
    """Flash an image file to a device.

    Args:
        image_path: Path to the image file.
        device_path: Path to the target device.
        settings: Application settings (optional).
        verify: Whether to verify after writing (defaults to settings).
        on_progress: Called with write progress snapshots.
        on_verify_progress: Called with verification progress snapshots.
        preparer: Platform device preparer (defaults per platform).
        mount_guard: Mount guard for verification (defaults per platform).

    Returns:
        FlashResult with operation details. Failures are reported in the
        result, never raised.
    """
    if settings is None:
        settings = get_settings()
    if verify is None:
        verify = settings.verify

    image_path = Path(image_path)
    logger.info(
        "Flash requested: image=%s, device=%s, verify=%s",
        image_path.name,
        device_path,
        verify,
    )

    if not image_path.is_file():
        logger.error("Image file not found: %s", image_path)
        return FlashResult(
            success=False,
            image_path=str(image_path),
            device_path=device_path,
            bytes_written=0,
            verification_result=VerificationResult.SKIPPED,
            error_message=f"Image file not found: {image_path}",
            error_code="IMAGE_NOT_FOUND",
        )

    try:
        result = asyncio.run(
            _flash(
                image_path,
                device_path,
                settings,
                verify,
                on_progress,
                on_verify_progress,
                preparer,
                mount_guard,
            )
        )
    except (ImageWriteError, OSError) as e:
        return _failed_result(image_path, device_path, e)

    if result.success:
        logger.info(
            "Flash succeeded: %d bytes written to %s, verification=%s",
            result.bytes_written,
            result.device_path,
            result.verification_result.value,
        )
    else:
        logger.error("Flash failed: %s", result.error_message)
    return result


def verify_image(
    image_path: str | Path,
    device_path: str,
    *,
    settings: Settings | None = None,
    on_progress: ProgressCallback | None = None,
    mount_guard: MountGuard | None = None,
) -> FlashResult:
    """Verify a device against an image file without writing.

    This can be used to check a previously flashed card.

    Returns:
        FlashResult with ``bytes_written`` of 0 and the verification outcome.

    Raises:
        ImageWriteError: Verification could not run to completion.
        OSError: The image or device could not be read.
    """
    if settings is None:
        settings = get_settings()

    verifier = VerifyPipeline(
        device_path,
        image_path,
        digest=HashlibDigest(settings.digest_algorithm, settings.digest_chunk_size),
        mount_guard=mount_guard,
        on_progress=on_progress,
    )
    verify_result = asyncio.run(verifier.run())

    return FlashResult(
        success=verify_result.matched,
        image_path=str(image_path),
        device_path=device_path,
        bytes_written=0,
        verification_result=verify_result.result,
        source_digest=verify_result.source_digest,
        device_digest=verify_result.device_digest,
        error_code=None if verify_result.matched else "VERIFICATION_MISMATCH",
    )


__all__ = ["FlashResult", "flash_image", "verify_image"]
