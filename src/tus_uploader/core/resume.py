"""Single-stream upload that resumes from the server's confirmed offset."""

import logging
import threading
import time
from typing import BinaryIO, Callable, Optional

from .client import UploadStream
from .exceptions import ProtocolError, RetriesExhaustedError, is_retryable
from .files import DEFAULT_BLOCK_SIZE, copy_range
from .models import OFFSET_UNKNOWN
from .retry import sleep_or_cancel

logger = logging.getLogger(__name__)

RESUME_RETRIES = 10
RESUME_INTERVAL = 5.0


def upload_with_resume(
    stream: UploadStream,
    source: BinaryIO,
    max_retries: int = RESUME_RETRIES,
    retry_interval: float = RESUME_INTERVAL,
    block_size: int = DEFAULT_BLOCK_SIZE,
    cancel_event: Optional[threading.Event] = None,
    on_progress: Optional[Callable[[int], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Copy ``source`` to the end into ``stream``, resuming after transport errors.

    Before the first copy and before every retry the stream is synced and the
    source is seeked to the confirmed remote offset, so bytes the server has
    already accepted are never sent twice. NetworkError and
    ChecksumMismatchError are retried up to ``max_retries`` times with a fixed
    ``retry_interval``; any other error is raised at once.

    Args:
        stream: Write stream of the target session
        source: Seekable binary file positioned anywhere
        max_retries: Retries allowed after the first copy
        retry_interval: Seconds to wait before each retry
        block_size: Bytes per write
        cancel_event: Set to abort a pending wait
        on_progress: Called with the confirmed offset after each write

    Returns:
        Number of bytes transferred by this call
    """
    transferred = 0

    def write(data: bytes) -> int:
        nonlocal transferred
        accepted = stream.write(data)
        transferred += accepted
        if on_progress:
            try:
                on_progress(stream.tell())
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")
        return accepted

    def reposition() -> int:
        offset = stream.sync()
        if offset == OFFSET_UNKNOWN:
            raise ProtocolError(f"Server did not report an upload offset for {stream.upload.location}")
        source.seek(offset)
        return offset

    offset = reposition()
    if offset:
        logger.info(f"Resuming {stream.upload.location} from offset {offset}")

    retries_left = max_retries
    resync = False
    while True:
        try:
            if resync:
                reposition()
            copy_range(source, write, None, block_size)
            logger.info(f"Upload finished: {stream.upload.location} ({stream.tell()} bytes)")
            return transferred
        except Exception as exc:
            if not is_retryable(exc):
                logger.error(f"Upload failed: {exc}")
                raise
            if retries_left == 0:
                logger.error(f"Upload failed after {max_retries} retries: {exc}")
                raise RetriesExhaustedError(max_retries + 1, exc) from exc
            retries_left -= 1
            logger.warning(
                f"Upload interrupted at offset {stream.tell()}: {exc}; "
                f"retrying in {retry_interval:.0f}s ({max_retries - retries_left}/{max_retries})"
            )

        resync = True
        sleep_or_cancel(retry_interval, cancel_event, sleep)
