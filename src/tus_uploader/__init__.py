"""
tus uploader - resumable, parallel chunked file uploads to tus servers.

This package provides:
- Parallel upload of file chunks as partial uploads merged by the server
- Single-stream uploads that resume from the server's confirmed offset
- Bounded retries with exponential backoff and cancellation
- CLI tool for uploads, status checks and file splitting
"""

__version__ = "1.0.0"

from .core.api import (
    TusUploader,
    upload_file_by_concat,
    upload_file_sequentially,
)
from .core.chunks import ChunkDescriptor, FileSection, plan_chunks
from .core.client import TusClient, UploadStream
from .core.exceptions import (
    ChecksumMismatchError,
    ConfigurationError,
    MergeTimeoutError,
    NetworkError,
    PartialUploadFailure,
    ProtocolError,
    RetriesExhaustedError,
    TusUploaderError,
    UploadAborted,
    UploadCancelledError,
    ValidationError,
)
from .core.files import split_file
from .core.merge import merge_and_await
from .core.models import OFFSET_UNKNOWN, UploaderConfig, UploadResult, UploadSession
from .core.pool import ChunkUploadPool
from .core.resume import upload_with_resume
from .core.retry import BackoffPolicy, retry

__all__ = [
    # Core classes
    "TusUploader",
    "TusClient",
    "UploadStream",
    "ChunkUploadPool",
    "BackoffPolicy",
    # Models
    "UploadSession",
    "UploaderConfig",
    "UploadResult",
    "ChunkDescriptor",
    "FileSection",
    "OFFSET_UNKNOWN",
    # Exceptions
    "TusUploaderError",
    "NetworkError",
    "ChecksumMismatchError",
    "ProtocolError",
    "UploadAborted",
    "RetriesExhaustedError",
    "PartialUploadFailure",
    "MergeTimeoutError",
    "UploadCancelledError",
    "ValidationError",
    "ConfigurationError",
    # Functions
    "plan_chunks",
    "retry",
    "upload_with_resume",
    "merge_and_await",
    "split_file",
    "upload_file_by_concat",
    "upload_file_sequentially",
    # Metadata
    "__version__",
]
