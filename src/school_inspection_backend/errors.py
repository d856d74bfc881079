"""
Failure taxonomy for the submission pipeline.

Every failure the pipeline can report is a ``SubmissionFailure`` tagged with a
``FailureKind``. The kind decides the HTTP status and the default message
shown to the client; the optional message overrides the default.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    INVALID_IDENTIFIER = "invalid_identifier"
    UNAUTHORIZED_IDENTIFIER = "unauthorized_identifier"
    VALIDATION_FAILED = "validation_failed"
    UPLOAD_TOO_LARGE = "upload_too_large"
    UPLOAD_FAILED = "upload_failed"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self]

    @property
    def default_message(self) -> str:
        return DEFAULT_MESSAGES[self]


STATUS_CODES = {
    FailureKind.INVALID_IDENTIFIER: 400,
    FailureKind.UNAUTHORIZED_IDENTIFIER: 404,
    FailureKind.VALIDATION_FAILED: 400,
    FailureKind.UPLOAD_TOO_LARGE: 413,
    FailureKind.UPLOAD_FAILED: 500,
    FailureKind.TIMEOUT: 408,
    FailureKind.INTERNAL_ERROR: 500,
}

DEFAULT_MESSAGES = {
    FailureKind.INVALID_IDENTIFIER: "Invalid UDISE Code",
    FailureKind.UNAUTHORIZED_IDENTIFIER: "User not found with the provided UDISE code",
    FailureKind.VALIDATION_FAILED: "Validation failed",
    FailureKind.UPLOAD_TOO_LARGE: "File too large. Please reduce file size and try again.",
    FailureKind.UPLOAD_FAILED: "File upload failed. Please try again.",
    FailureKind.TIMEOUT: "Request timeout. Please try again with smaller files.",
    FailureKind.INTERNAL_ERROR: "Internal server error. Please try again.",
}


class SubmissionFailure(Exception):
    """A classified pipeline failure carrying a client-safe message."""

    def __init__(self, kind: FailureKind, message: Optional[str] = None) -> None:
        self.kind = kind
        self.message = message or kind.default_message
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are absent."""
