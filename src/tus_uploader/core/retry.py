"""Exponential backoff and the retry loop shared by chunk uploads."""

import logging
import random
import threading
import time
from typing import Callable, Optional, TypeVar

from .exceptions import RetriesExhaustedError, UploadAborted, UploadCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, int, float, BaseException], None]


class BackoffPolicy:
    """2**attempt seconds plus up to 500ms of jitter, capped at max_wait."""

    def __init__(
        self,
        base: float = 1.0,
        jitter: float = 0.5,
        max_wait: Optional[float] = 60.0,
        seed: Optional[int] = None,
    ) -> None:
        self.base = base
        self.jitter = jitter
        self.max_wait = max_wait
        self._random = random.Random(seed)
        self._lock = threading.Lock()

    def wait(self, attempt: int) -> float:
        """Return the wait in seconds after the 0-based ``attempt`` failed."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        with self._lock:
            jitter = self._random.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        # Cap the exponent so huge attempt counts don't overflow the float.
        backoff = self.base * (2 ** min(attempt, 62)) + jitter
        if self.max_wait is not None:
            backoff = min(backoff, self.max_wait)
        return backoff


def sleep_or_cancel(
    seconds: float,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Sleep, waking early with UploadCancelledError if the token is set."""
    if cancel_event is None:
        if seconds > 0:
            sleep(seconds)
        return
    if cancel_event.is_set() or cancel_event.wait(seconds):
        raise UploadCancelledError()


def retry(
    attempts: int,
    func: Callable[[], T],
    backoff: Optional[BackoffPolicy] = None,
    description: str = "operation",
    on_retry: Optional[RetryCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` up to ``attempts`` times.

    Returns the first successful result. UploadAborted and UploadCancelledError
    propagate immediately; any other failure is retried after a backoff wait.
    When every attempt fails, RetriesExhaustedError wraps the last error.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    backoff = backoff or BackoffPolicy()

    last_error: Optional[BaseException] = None
    for attempt in range(attempts):
        if cancel_event is not None and cancel_event.is_set():
            raise UploadCancelledError()
        try:
            return func()
        except (UploadAborted, UploadCancelledError):
            raise
        except Exception as exc:
            last_error = exc
            if attempt == attempts - 1:
                break

            wait = backoff.wait(attempt)
            logger.warning(f"{description}: attempt {attempt + 1}/{attempts} failed: {exc}")
            logger.info(
                f"{description}: retrying in {wait:.1f}s (attempt {attempt + 1}/{attempts})"
            )
            if on_retry:
                try:
                    on_retry(attempt + 1, attempts, wait, exc)
                except Exception as e:
                    logger.warning(f"Retry callback error: {e}")
            sleep_or_cancel(wait, cancel_event, sleep)

    logger.error(f"{description}: exceeded max attempts ({attempts})")
    raise RetriesExhaustedError(attempts, last_error) from last_error
