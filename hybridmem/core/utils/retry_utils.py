"""Bounded retry for SQLite lock contention."""

import time
from typing import Callable, TypeVar

from loguru import logger

from ..exceptions import TransientLockError

T = TypeVar("T")

DB_RETRY_MAX_RETRIES = 3
DB_RETRY_BASE_DELAY = 0.05  # seconds
DB_RETRY_MAX_DELAY = 1.0  # seconds

LOCK_MARKERS = (
    "database is locked",
    "database is busy",
    "database table is locked",
    "sqlite_busy",
    "sqlite_locked",
)


def is_retryable(error: BaseException) -> bool:
    """Return True when `error` signals transient lock contention."""
    if isinstance(error, TransientLockError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in LOCK_MARKERS)


def with_retry(
    fn: Callable[[], T],
    max_retries: int = DB_RETRY_MAX_RETRIES,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> T:
    """Call `fn`, retrying up to `max_retries` extra times while it fails with a lock error.

    Non-lock errors propagate on the first occurrence. When the retries run out
    a `TransientLockError` carrying the original message is raised.
    """
    attempts = max(0, max_retries) + 1
    for attempt in range(attempts):
        try:
            return fn()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt == attempts - 1:
                raise TransientLockError(f"{e} (gave up after {attempts} attempts)", attempts=attempts) from e
            delay = min(max_delay, base_delay * (2**attempt))
            logger.warning(f"{e} (attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s")
            time.sleep(delay)

    raise AssertionError("unreachable")
