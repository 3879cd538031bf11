"""Programmatic API for chunked and resumable uploads."""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from .chunks import ChunkDescriptor, plan_file_chunks
from .client import TusClient, UploadStream
from .exceptions import (
    ProtocolError,
    TusUploaderError,
    UploadCancelledError,
    ValidationError,
)
from .files import copy_range
from .merge import merge_and_await
from .models import OFFSET_UNKNOWN, UploaderConfig, UploadResult, UploadSession
from .pool import ChunkUploadPool, UploadJob
from .resume import upload_with_resume
from .retry import BackoffPolicy


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, float], None]


class TusUploader:
    """High-level API for uploading files to a tus server."""

    def __init__(
        self,
        config: Optional[UploaderConfig] = None,
        client: Optional[TusClient] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the uploader.

        Args:
            config: Uploader settings (or from TUS_* env vars)
            client: tus client to use instead of one built from the config
            progress_callback: Called with (bytes_uploaded, total_bytes, speed_mbps)
            cancel_event: Set from another thread to stop waiting and skip pending chunks
        """
        self.config = config or UploaderConfig.from_env()
        self.client = client or TusClient(
            self.config.base_url,
            timeout=self.config.request_timeout,
            headers=self.config.headers,
        )
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event
        self.sleep = sleep

        self._capabilities_checked = False

    def _ensure_capabilities(self) -> None:
        if not self._capabilities_checked:
            self.client.update_capabilities()
            self._capabilities_checked = True

    def _metadata(self, file_path: Path, copy_path: Optional[str]) -> Dict[str, str]:
        metadata = {"filename": file_path.name}
        if copy_path:
            metadata[self.config.copy_path_key] = copy_path
        return metadata

    def _report(self, uploaded: int, total: int, start_time: float) -> None:
        if not self.progress_callback:
            return
        elapsed = time.time() - start_time
        speed_mbps = (uploaded / (1024**2)) / elapsed if elapsed > 0 else 0
        try:
            self.progress_callback(uploaded, total, speed_mbps)
        except Exception as e:
            logger.warning(f"Progress callback error: {e}")

    @staticmethod
    def _check_file(file_path: Union[str, Path]) -> Path:
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Local file not found: {file_path}")
        if file_path.is_dir():
            raise ValueError(f"Path is a directory, not a file: {file_path}")
        return file_path

    def cleanup(self, uploads: List[UploadSession]) -> int:
        """Delete uploads best-effort. Returns how many were deleted."""
        deleted = 0
        for upload in uploads:
            try:
                if self.client.delete_upload(upload.location):
                    deleted += 1
                    logger.info(f"Deleted abandoned upload: {upload.location}")
            except TusUploaderError as e:
                logger.warning(f"Failed to delete upload {upload.location}: {e}")
        return deleted

    # Session helpers
    def create_upload_from_size(
        self, size: int, partial: bool = False, metadata: Optional[Dict[str, str]] = None
    ) -> UploadSession:
        """Create an upload of ``size`` bytes."""
        self._ensure_capabilities()
        upload = self.client.create_upload(size, partial, metadata)
        logger.info(f"Location: {upload.location}")
        return upload

    def create_upload_from_file(
        self, file_path: Union[str, Path], partial: bool = False
    ) -> UploadSession:
        """Create an upload sized to a local file."""
        file_path = self._check_file(file_path)
        return self.create_upload_from_size(
            file_path.stat().st_size, partial, {"filename": file_path.name}
        )

    def get_upload(self, location: str) -> UploadSession:
        """Fetch the current state of an upload."""
        return self.client.get_upload(location)

    # Parallel upload
    def upload_chunk(
        self,
        chunk: ChunkDescriptor,
        filename: str,
        on_created: Optional[Callable[[UploadSession], None]] = None,
    ) -> UploadSession:
        """Upload one chunk into a new partial upload.

        ``on_created`` is called with the session as soon as the server has
        created it, before any data is sent.
        """
        metadata = {"filename": filename, "chunk": str(chunk.index)}
        upload = self.client.create_upload(chunk.size, partial=True, metadata=metadata)
        if on_created:
            on_created(upload)

        stream = UploadStream(self.client, upload, checksum=self.config.checksum)
        with chunk.open() as section:
            copy_range(section, stream.write, chunk.size, self.config.stream_block_size)

        if upload.remote_offset != chunk.size:
            raise ProtocolError(
                f"Chunk {chunk.index}: server confirmed {upload.remote_offset} of {chunk.size} bytes"
            )
        logger.debug(f"Chunk {chunk.index}: {chunk.size} bytes sent to {upload.location}")
        return upload

    def upload_by_concat(
        self, file_path: Union[str, Path], copy_path: Optional[str] = None
    ) -> UploadResult:
        """Upload a file as parallel partial uploads merged by the server.

        Args:
            file_path: Local file path
            copy_path: Destination path stored under ``config.copy_path_key``

        Returns:
            The merged upload
        """
        file_path = self._check_file(file_path)
        file_size = file_path.stat().st_size
        if file_size == 0:
            logger.info("Empty file, uploading without chunking")
            return self.upload_sequential(file_path, copy_path)

        self._ensure_capabilities()
        extensions = self.client.capabilities.get("extensions")
        if extensions and "concatenation" not in extensions:
            raise ProtocolError("Server does not support the concatenation extension")

        chunks = plan_file_chunks(str(file_path), self.config.chunk_size)
        logger.info(
            f"Uploading {file_path} ({file_size} bytes) in {len(chunks)} chunks "
            f"of up to {self.config.chunk_size} bytes"
        )

        start_time = time.time()
        uploaded = 0
        progress_lock = threading.Lock()

        def on_chunk_complete(job: UploadJob) -> None:
            nonlocal uploaded
            with progress_lock:
                uploaded += job.descriptor.size
                done = uploaded
            self._report(done, file_size, start_time)

        pool = ChunkUploadPool(
            concurrency=self.config.concurrency,
            retries=self.config.retries,
            backoff=BackoffPolicy(max_wait=self.config.max_backoff),
            cancel_event=self.cancel_event,
            on_chunk_complete=on_chunk_complete,
            sleep=self.sleep,
        )

        created: List[UploadSession] = []
        accepted: List[UploadSession] = []
        created_lock = threading.Lock()

        def on_created(upload: UploadSession) -> None:
            with created_lock:
                created.append(upload)

        try:
            parts = pool.run_all(
                chunks, lambda chunk: self.upload_chunk(chunk, file_path.name, on_created)
            )
            merged = merge_and_await(
                self.client,
                parts,
                self._metadata(file_path, copy_path),
                poll_interval=self.config.merge_poll_interval,
                timeout=self.config.merge_timeout,
                cancel_event=self.cancel_event,
                sleep=self.sleep,
                on_accepted=accepted.append,
            )
        except UploadCancelledError:
            raise
        except TusUploaderError:
            if accepted:
                # The server may still be merging; its parts must stay.
                logger.warning(
                    f"Merge into {accepted[0].location} was accepted, keeping {len(parts)} parts"
                )
            elif self.config.cleanup_on_failure:
                deleted = self.cleanup(list(created))
                logger.info(f"Cleaned up {deleted} partial uploads after failure")
            raise

        abandoned = [u for u in created if u.location not in {p.location for p in parts}]
        if abandoned and self.config.cleanup_on_failure:
            self.cleanup(abandoned)

        elapsed = time.time() - start_time
        result = UploadResult(
            location=merged.location,
            size=merged.remote_size,
            chunks=len(parts),
            upload_time=elapsed,
            speed_mbps=(file_size / (1024**2)) / elapsed if elapsed > 0 else 0,
        )
        logger.info(
            f"Upload complete: {result.location} ({result.size} bytes, "
            f"{result.speed_mbps:.2f} MB/s)"
        )
        return result

    # Sequential upload
    def _stream_file(self, upload: UploadSession, file_path: Path) -> UploadResult:
        file_size = file_path.stat().st_size
        stream = UploadStream(self.client, upload, checksum=self.config.checksum)
        start_time = time.time()

        with open(file_path, "rb") as f:
            upload_with_resume(
                stream,
                f,
                max_retries=self.config.resume_retries,
                retry_interval=self.config.resume_interval,
                block_size=self.config.stream_block_size,
                cancel_event=self.cancel_event,
                on_progress=lambda offset: self._report(offset, file_size, start_time),
                sleep=self.sleep,
            )

        elapsed = time.time() - start_time
        return UploadResult(
            location=upload.location,
            size=stream.tell(),
            chunks=1,
            upload_time=elapsed,
            speed_mbps=(file_size / (1024**2)) / elapsed if elapsed > 0 else 0,
        )

    def upload_sequential(
        self, file_path: Union[str, Path], copy_path: Optional[str] = None
    ) -> UploadResult:
        """Upload a file through one resumable upload.

        Args:
            file_path: Local file path
            copy_path: Destination path stored under ``config.copy_path_key``

        Returns:
            The finished upload
        """
        file_path = self._check_file(file_path)
        self._ensure_capabilities()

        upload = self.client.create_upload(
            file_path.stat().st_size, partial=False, metadata=self._metadata(file_path, copy_path)
        )
        logger.info(f"Created upload URL: {upload.location}")

        result = self._stream_file(upload, file_path)
        logger.info(f"Upload complete! Final location: {result.location}")
        return result

    def resume(self, location: str, file_path: Union[str, Path]) -> UploadResult:
        """Continue an existing upload from its confirmed offset."""
        file_path = self._check_file(file_path)
        upload = self.client.get_upload(location)
        file_size = file_path.stat().st_size

        if upload.remote_size != OFFSET_UNKNOWN and upload.remote_size != file_size:
            raise ValidationError(
                "file_path",
                str(file_path),
                f"file is {file_size} bytes but the upload expects {upload.remote_size}",
            )
        logger.info(f"Resuming {location} at {upload.remote_offset}/{file_size} bytes")
        return self._stream_file(upload, file_path)


# Convenience functions for quick usage
def upload_file_by_concat(
    base_url: str,
    file_path: Union[str, Path],
    copy_path: Optional[str] = None,
    chunk_size: Optional[int] = None,
    retries: Optional[int] = None,
    concurrency: Optional[int] = None,
) -> UploadResult:
    """Quick function to upload a file as merged parallel chunks."""
    config = UploaderConfig.from_env(
        base_url=base_url, chunk_size=chunk_size, retries=retries, concurrency=concurrency
    )
    return TusUploader(config).upload_by_concat(file_path, copy_path)


def upload_file_sequentially(
    base_url: str,
    file_path: Union[str, Path],
    copy_path: Optional[str] = None,
) -> UploadResult:
    """Quick function to upload a file through one resumable upload."""
    config = UploaderConfig.from_env(base_url=base_url)
    return TusUploader(config).upload_sequential(file_path, copy_path)
