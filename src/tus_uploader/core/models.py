"""
Pydantic models for the tus uploader.

These models describe remote upload sessions, uploader configuration and the
result returned to callers.
"""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from .exceptions import ConfigurationError

# Remote offset/size before the server knows it (e.g. a merge still running).
OFFSET_UNKNOWN = -1

DEFAULT_CHUNK_SIZE = 1 * 1024 * 1024
DEFAULT_COPY_PATH_KEY = "Upload-Copy-Path"


class UploadSession(BaseModel):
    """A remote resumable upload session."""

    location: str = Field("", description="Session URL assigned by the server")
    remote_offset: int = Field(
        OFFSET_UNKNOWN, description="Bytes the server confirms it has received"
    )
    remote_size: int = Field(
        OFFSET_UNKNOWN, description="Declared total size of the upload"
    )
    metadata: Dict[str, str] = Field(
        default_factory=dict, description="Upload-Metadata set at creation"
    )
    partial: bool = Field(False, description="Fragment destined for concatenation")

    @property
    def is_complete(self) -> bool:
        return (
            self.remote_offset != OFFSET_UNKNOWN
            and self.remote_offset == self.remote_size
        )


class UploadResult(BaseModel):
    """Outcome of a finished upload."""

    location: str = Field(..., description="Final session URL")
    size: int = Field(..., description="Uploaded size in bytes", examples=[10000000])
    chunks: int = Field(1, description="Number of partial sessions merged")
    upload_time: float = Field(..., description="Upload time in seconds", examples=[12.34])
    speed_mbps: float = Field(..., description="Upload speed in MB/s", examples=[4.2])


class UploaderConfig(BaseModel):
    """Uploader configuration model."""

    base_url: str = Field(
        ..., description="tus creation endpoint", examples=["http://127.0.0.1:8080/files/"]
    )
    chunk_size: int = Field(
        DEFAULT_CHUNK_SIZE, gt=0, description="Bytes per partial upload"
    )
    concurrency: int = Field(4, ge=1, description="Chunk uploads running at once")
    retries: int = Field(5, ge=1, description="Attempts per chunk")
    copy_path_key: str = Field(
        DEFAULT_COPY_PATH_KEY, description="Metadata key for the destination path"
    )
    request_timeout: float = Field(30, gt=0, description="HTTP timeout in seconds")
    max_backoff: float = Field(60, gt=0, description="Ceiling for retry waits in seconds")
    merge_poll_interval: float = Field(1.0, ge=0, description="Seconds between merge polls")
    merge_timeout: Optional[float] = Field(
        None, gt=0, description="Give up waiting for the merge after this many seconds"
    )
    resume_retries: int = Field(10, ge=0, description="Retries of the sequential upload")
    resume_interval: float = Field(5.0, ge=0, description="Seconds between sequential retries")
    stream_block_size: int = Field(
        2 * 1024 * 1024, gt=0, description="Bytes sent per PATCH request"
    )
    checksum: bool = Field(False, description="Send Upload-Checksum with every PATCH")
    cleanup_on_failure: bool = Field(
        True, description="Delete partial sessions left behind by a failed upload"
    )
    headers: Dict[str, str] = Field(default_factory=dict, description="Extra HTTP headers")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate the endpoint URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        # urljoin drops the last path segment without a trailing slash
        return v if v.endswith("/") else v + "/"

    @classmethod
    def from_env(cls, **overrides) -> "UploaderConfig":
        """Build a config from TUS_* environment variables."""
        env = {
            "base_url": os.getenv("TUS_BASE_URL"),
            "chunk_size": os.getenv("TUS_CHUNK_SIZE"),
            "concurrency": os.getenv("TUS_CONCURRENCY"),
            "retries": os.getenv("TUS_RETRIES"),
            "copy_path_key": os.getenv("TUS_COPY_PATH_KEY"),
            "request_timeout": os.getenv("TUS_REQUEST_TIMEOUT"),
            "merge_timeout": os.getenv("TUS_MERGE_TIMEOUT"),
        }
        values = {k: v for k, v in env.items() if v}
        values.update({k: v for k, v in overrides.items() if v is not None})

        if not values.get("base_url"):
            raise ConfigurationError(
                "tus endpoint required. Set TUS_BASE_URL environment variable "
                "or pass base_url parameter."
            )

        try:
            return cls(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid uploader configuration: {e}") from e
