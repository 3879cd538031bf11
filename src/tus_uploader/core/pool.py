"""Bounded-concurrency upload of planned chunks."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .chunks import ChunkDescriptor
from .exceptions import (
    PartialUploadFailure,
    UploadAborted,
    UploadCancelledError,
    is_retryable,
)
from .models import UploadSession
from .retry import BackoffPolicy, RetryCallback, retry

logger = logging.getLogger(__name__)

UploadOne = Callable[[ChunkDescriptor], UploadSession]


class FailureCell:
    """Write-once record of the first terminal chunk failure.

    Later failures are still collected in ``errors`` but never replace
    ``first``. Reads are lock-free; only writers take the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failed = threading.Event()
        self.first: Optional[BaseException] = None
        self.errors: Dict[int, BaseException] = {}

    def set(self, index: int, error: BaseException) -> bool:
        """Record a failure. Returns True if it was the first one."""
        with self._lock:
            self.errors[index] = error
            if self.first is None:
                self.first = error
                self._failed.set()
                return True
            return False

    def is_set(self) -> bool:
        return self._failed.is_set()


@dataclass
class UploadJob:
    """Per-chunk state owned by one worker."""

    descriptor: ChunkDescriptor
    session: Optional[UploadSession] = None
    attempts_used: int = 0
    skipped: bool = False
    error: Optional[BaseException] = None
    elapsed: float = 0.0


class ChunkUploadPool:
    """Run chunk uploads with at most ``concurrency`` in flight.

    Jobs start in planner order. Once any chunk fails terminally, jobs that
    have not started yet are skipped; jobs already running finish on their
    own. Sessions are returned in chunk index order regardless of which
    chunk finished first.

    A pool runs one batch at a time; ``jobs`` and ``failures`` describe the
    batch in progress or the last one. Use one pool per concurrent upload.
    """

    def __init__(
        self,
        concurrency: int = 4,
        retries: int = 5,
        backoff: Optional[BackoffPolicy] = None,
        cancel_event: Optional[threading.Event] = None,
        on_retry: Optional[RetryCallback] = None,
        on_chunk_complete: Optional[Callable[[UploadJob], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if retries < 1:
            raise ValueError("retries must be >= 1")
        self.concurrency = concurrency
        self.retries = retries
        self.backoff = backoff or BackoffPolicy()
        self.cancel_event = cancel_event
        self.on_retry = on_retry
        self.on_chunk_complete = on_chunk_complete
        self.sleep = sleep

        self.failures = FailureCell()
        self.jobs: List[UploadJob] = []
        self._running = threading.Lock()

    def run_all(self, chunks: Sequence[ChunkDescriptor], upload_one: UploadOne) -> List[UploadSession]:
        """Upload every chunk and return the sessions ordered by chunk index.

        Raises:
            PartialUploadFailure: if any chunk failed terminally
            UploadCancelledError: if the cancel token was set
            RuntimeError: if this pool is already running another batch
        """
        if not self._running.acquire(blocking=False):
            raise RuntimeError("ChunkUploadPool is already running a batch")
        try:
            return self._run_batch(chunks, upload_one)
        finally:
            self._running.release()

    def _run_batch(
        self, chunks: Sequence[ChunkDescriptor], upload_one: UploadOne
    ) -> List[UploadSession]:
        self.failures = FailureCell()
        self.jobs = [UploadJob(descriptor=chunk) for chunk in chunks]
        slots: List[Optional[UploadSession]] = [None] * len(self.jobs)

        logger.info(
            f"Uploading {len(self.jobs)} chunks with up to {self.concurrency} in parallel"
        )

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            futures = {
                executor.submit(self._run_job, job, upload_one): position
                for position, job in enumerate(self.jobs)
            }
            for fut in as_completed(futures):
                session = fut.result()
                if session is not None:
                    slots[futures[fut]] = session

        if self.cancel_event is not None and self.cancel_event.is_set():
            raise UploadCancelledError()

        if self.failures.is_set():
            completed = [j.descriptor.index for j in self.jobs if j.session is not None]
            skipped = [j.descriptor.index for j in self.jobs if j.skipped]
            logger.error(
                f"Chunk upload failed: {len(self.failures.errors)} failed, "
                f"{len(completed)} completed, {len(skipped)} skipped"
            )
            raise PartialUploadFailure(dict(self.failures.errors), completed, skipped)

        return [s for s in slots if s is not None]

    def _run_job(self, job: UploadJob, upload_one: UploadOne) -> Optional[UploadSession]:
        index = job.descriptor.index
        if self.failures.is_set() or (self.cancel_event is not None and self.cancel_event.is_set()):
            job.skipped = True
            logger.debug(f"Chunk {index}: skipped")
            return None

        def attempt() -> UploadSession:
            job.attempts_used += 1
            try:
                return upload_one(job.descriptor)
            except (UploadAborted, UploadCancelledError):
                raise
            except Exception as exc:
                if is_retryable(exc):
                    raise
                raise UploadAborted(f"Chunk {index}: {exc}", cause=exc) from exc

        start = time.time()
        try:
            job.session = retry(
                self.retries,
                attempt,
                backoff=self.backoff,
                description=f"Chunk {index}",
                on_retry=self.on_retry,
                cancel_event=self.cancel_event,
                sleep=self.sleep,
            )
        except UploadCancelledError as exc:
            job.error = exc
            logger.info(f"Chunk {index}: cancelled")
            return None
        except Exception as exc:
            job.error = exc
            self.failures.set(index, exc)
            logger.error(f"Chunk {index}: failed after {job.attempts_used} attempts: {exc}")
            return None
        finally:
            job.elapsed = time.time() - start

        logger.info(f"Chunk {index}: uploaded ({job.descriptor.size} bytes)")
        if self.on_chunk_complete:
            try:
                self.on_chunk_complete(job)
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")
        return job.session


def run_all(
    chunks: Sequence[ChunkDescriptor],
    concurrency: int,
    upload_one: UploadOne,
    retries: int,
    **kwargs,
) -> List[UploadSession]:
    """Quick function to upload chunks with a fresh pool."""
    pool = ChunkUploadPool(concurrency=concurrency, retries=retries, **kwargs)
    return pool.run_all(chunks, upload_one)
