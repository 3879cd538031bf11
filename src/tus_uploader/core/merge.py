"""Server-side concatenation of partial uploads."""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from .client import TusClient
from .exceptions import MergeTimeoutError
from .models import UploadSession
from .retry import sleep_or_cancel

logger = logging.getLogger(__name__)

MERGE_POLL_INTERVAL = 1.0


def wait_for_merge(
    client: TusClient,
    location: str,
    poll_interval: float = MERGE_POLL_INTERVAL,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> UploadSession:
    """Poll ``location`` until its confirmed offset equals its size."""
    start = clock()
    polls = 0
    while True:
        upload = client.get_upload(location)
        polls += 1
        if upload.is_complete:
            logger.info(
                f"Merge complete: {location} ({upload.remote_offset}/{upload.remote_size} bytes, "
                f"{polls} polls)"
            )
            return upload

        waited = clock() - start
        if timeout is not None and waited + poll_interval > timeout:
            logger.error(f"Merge of {location} not complete after {waited:.1f}s")
            raise MergeTimeoutError(location, waited)

        logger.info("Waiting for merge to complete...")
        sleep_or_cancel(poll_interval, cancel_event, sleep)


def merge_and_await(
    client: TusClient,
    parts: List[UploadSession],
    metadata: Optional[Dict[str, str]] = None,
    poll_interval: float = MERGE_POLL_INTERVAL,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
    on_accepted: Optional[Callable[[UploadSession], None]] = None,
) -> UploadSession:
    """Concatenate ``parts`` in order and wait until the merged upload is complete.

    The concatenation request is sent once; retrying it is up to the caller.

    Args:
        client: tus client
        parts: Completed partial uploads in byte order
        metadata: Metadata of the final upload
        poll_interval: Seconds between status polls
        timeout: Give up with MergeTimeoutError after this many seconds
        cancel_event: Set to stop waiting
        on_accepted: Called with the final upload once the server has accepted
            the concatenation, before polling starts

    Returns:
        The fully merged upload
    """
    logger.info(f"All {len(parts)} chunks uploaded, starting merge...")
    final = client.concatenate_uploads(parts, metadata)
    logger.info(f"Merge accepted, final upload: {final.location}")
    if on_accepted:
        on_accepted(final)

    merged = wait_for_merge(
        client,
        final.location,
        poll_interval=poll_interval,
        timeout=timeout,
        cancel_event=cancel_event,
        sleep=sleep,
    )
    merged.metadata = merged.metadata or final.metadata
    return merged
