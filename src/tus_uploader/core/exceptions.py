"""
Exception classes for the tus uploader.

Provides the error taxonomy shared by the client, the retry executor and the
upload orchestrators.
"""

from typing import Any, Dict, List, Optional


class TusUploaderError(Exception):
    """Base exception for all tus uploader errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class NetworkError(TusUploaderError):
    """Raised for transient transport failures. Retryable."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        details = {"status_code": status_code} if status_code else {}
        super().__init__(message, details)
        self.status_code = status_code


class ChecksumMismatchError(TusUploaderError):
    """Raised when the server rejects the checksum of the bytes just sent. Retryable."""

    def __init__(self, location: Optional[str] = None, offset: Optional[int] = None) -> None:
        details = {"location": location, "offset": offset} if location else {}
        super().__init__("Upload checksum mismatch", details)
        self.location = location
        self.offset = offset


class ProtocolError(TusUploaderError):
    """Raised when the server rejects the request semantics. Fatal."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        details = {"status_code": status_code} if status_code else {}
        super().__init__(message, details)
        self.status_code = status_code


class UploadAborted(TusUploaderError):
    """Raised to leave a retry loop immediately without consuming attempts."""

    def __init__(self, message: str = "Task aborted", cause: Optional[BaseException] = None) -> None:
        details = {"cause": repr(cause)} if cause is not None else {}
        super().__init__(message, details)
        self.cause = cause


class RetriesExhaustedError(TusUploaderError):
    """Raised when every allowed attempt has failed."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        details = {"last_error": str(last_error)} if last_error is not None else {}
        super().__init__(f"Too many attempts ({attempts}) to upload the data", details)
        self.attempts = attempts
        self.last_error = last_error


class PartialUploadFailure(TusUploaderError):
    """Raised when at least one chunk of a parallel upload failed terminally."""

    def __init__(
        self,
        errors: Dict[int, BaseException],
        completed: Optional[List[int]] = None,
        skipped: Optional[List[int]] = None,
    ) -> None:
        self.errors = errors
        self.completed = completed or []
        self.skipped = skipped or []
        details = {
            "failed_chunks": sorted(errors),
            "completed_chunks": len(self.completed),
            "skipped_chunks": len(self.skipped),
        }
        super().__init__("Chunk upload failed, merge aborted", details)


class MergeTimeoutError(TusUploaderError):
    """Raised when a concatenated upload does not finish merging in time."""

    def __init__(self, location: str, waited: float) -> None:
        super().__init__(
            f"Merge of {location} did not complete within {waited:.1f}s",
            {"location": location},
        )
        self.location = location
        self.waited = waited


class UploadCancelledError(TusUploaderError):
    """Raised when the cancel token is set while an upload is waiting."""

    def __init__(self, message: str = "Upload cancelled") -> None:
        super().__init__(message)


class ValidationError(TusUploaderError):
    """Raised for input validation errors."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        details = {"field": field, "value": value}
        super().__init__(f"Validation error for {field}: {message}", details)
        self.field = field
        self.value = value


class ConfigurationError(TusUploaderError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


def is_retryable(exc: BaseException) -> bool:
    """Return True for transport errors worth another attempt."""
    return isinstance(exc, (NetworkError, ChecksumMismatchError))
