"""Domain exception hierarchy for the attachment pipeline."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable reason a candidate failed to become an attachment."""

    NOT_FOUND = "not-found"
    NOT_A_FILE = "not-a-file"
    TOO_LARGE = "too-large"
    UNSUPPORTED_TYPE = "unsupported-type"
    QUOTA_EXCEEDED = "quota-exceeded"
    ALREADY_REGISTERED = "already-registered"
    STABILITY_TIMEOUT = "stability-timeout"
    IO_FAILURE = "io-failure"


class TermAttachError(RuntimeError):
    """Base class for all domain-level pipeline errors."""


class ConfigValidationError(TermAttachError):
    """Raised when configuration cannot be validated safely."""


class AttachmentError(TermAttachError):
    """Raised when a candidate cannot be turned into an attachment."""

    kind: ErrorKind = ErrorKind.IO_FAILURE

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class NotFoundError(AttachmentError):
    """Raised when a candidate path does not exist."""

    kind = ErrorKind.NOT_FOUND


class NotAFileError(AttachmentError):
    """Raised when a candidate path is a directory or special file."""

    kind = ErrorKind.NOT_A_FILE


class TooLargeError(AttachmentError):
    """Raised when a file exceeds the per-kind size ceiling."""

    kind = ErrorKind.TOO_LARGE


class UnsupportedTypeError(AttachmentError):
    """Raised when an image candidate is not a supported image format."""

    kind = ErrorKind.UNSUPPORTED_TYPE


class QuotaExceededError(AttachmentError):
    """Raised when adding an attachment would break a registry quota."""

    kind = ErrorKind.QUOTA_EXCEEDED


class AlreadyRegisteredError(AttachmentError):
    """Raised when a path is already registered or being processed."""

    kind = ErrorKind.ALREADY_REGISTERED


class StabilityTimeoutError(AttachmentError):
    """Raised when a file keeps changing size after every re-check."""

    kind = ErrorKind.STABILITY_TIMEOUT


class IoFailureError(AttachmentError):
    """Raised when the filesystem refuses a read or write."""

    kind = ErrorKind.IO_FAILURE
