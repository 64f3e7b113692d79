"""Exceptions raised by the write and verify pipelines.

Low-level ``OSError`` from opening, reading or writing a device is never
wrapped here; it reaches the caller unchanged. The one exception is an
``EINVAL`` from a chunk write, which is translated into ``InvalidImageError``.
"""


class ImageWriteError(Exception):
    """Base exception for image write errors."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class MissingLengthError(ImageWriteError):
    """The length of the source cannot be determined up front."""

    def __init__(self, source: object) -> None:
        super().__init__(
            f"Source length missing for {source!r}. "
            "Pass length= or give the stream a 'length' attribute.",
            error_code="MISSING_LENGTH",
        )
        self.source = source


class ShortWriteError(ImageWriteError):
    """The device accepted fewer bytes than requested in a single write."""

    def __init__(self, device_path: str, written: int, expected: int) -> None:
        super().__init__(
            f"Bytes written to {device_path}: {written}, expected {expected}",
            error_code="SHORT_WRITE",
        )
        self.device_path = device_path
        self.written = written
        self.expected = expected


class ShortTransferError(ImageWriteError):
    """A chunk read or write moved fewer bytes than requested."""

    def __init__(
        self, direction: str, offset: int, requested: int, actual: int
    ) -> None:
        super().__init__(
            f"Short {direction} at offset {offset}: "
            f"{actual} of {requested} bytes transferred",
            error_code="SHORT_TRANSFER",
        )
        self.direction = direction
        self.offset = offset
        self.requested = requested
        self.actual = actual


class InvalidImageError(ImageWriteError):
    """The device rejected the data with EINVAL, which points at a bad image."""

    def __init__(self) -> None:
        super().__init__(
            "Your image appears to be invalid. "
            "Please try again with a different image file.",
            error_code="INVALID_IMAGE",
        )


class DevicePrepareError(ImageWriteError):
    """The platform device preparer failed."""

    def __init__(self, device_path: str, detail: str) -> None:
        super().__init__(
            f"Could not prepare device {device_path}: {detail}",
            error_code="DEVICE_PREPARE_FAILED",
        )
        self.device_path = device_path
        self.detail = detail


class MountGuardError(ImageWriteError):
    """The mount guard could not be acquired."""

    def __init__(self, device_path: str, detail: str) -> None:
        super().__init__(
            f"Could not prevent {device_path} from mounting: {detail}",
            error_code="MOUNT_GUARD_FAILED",
        )
        self.device_path = device_path
        self.detail = detail


__all__ = [
    "DevicePrepareError",
    "ImageWriteError",
    "InvalidImageError",
    "MissingLengthError",
    "MountGuardError",
    "ShortTransferError",
    "ShortWriteError",
]
