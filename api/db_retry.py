"""
Retry helpers for transient database errors.

The worker pool and the API write the same video rows concurrently, so lock
contention is expected under load:

SQLite errors:
- "database is locked" - concurrent write contention
- "SQLITE_BUSY" / "SQLITE_LOCKED" - database busy states

PostgreSQL errors:
- Deadlocks (40P01)
- Serialization failures (40001)
- Connection errors
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from databases import Database

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD = 1.0  # seconds

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 0.1  # 100ms
DEFAULT_MAX_DELAY = 2.0
DEFAULT_EXPONENTIAL_BASE = 2

RETRYABLE_PATTERNS = [
    "database is locked",
    "database table is locked",
    "sqlite_busy",
    "sqlite_locked",
    "deadlock detected",
    "could not serialize access",
    "could not obtain lock",
    "connection refused",
    "lock timeout",
]

# The statement may have committed before the connection dropped, so these are
# only retried for statements that can safely run twice
CONNECTION_LOSS_PATTERNS = [
    "connection reset",
    "server closed the connection unexpectedly",
]


class DatabaseRetryableError(Exception):
    """Raised when a database operation fails after all retries exhausted."""


def is_retryable_database_error(exc: BaseException, idempotent: bool = True) -> bool:
    """
    Check if an exception is a transient database error (SQLite or PostgreSQL).

    Lost connections only count when idempotent is True.
    """
    error_str = str(exc).lower()
    if any(pattern in error_str for pattern in RETRYABLE_PATTERNS):
        return True
    if idempotent and any(pattern in error_str for pattern in CONNECTION_LOSS_PATTERNS):
        return True

    # asyncpg exposes the SQLSTATE
    if getattr(exc, "sqlstate", "") in ("40P01", "40001"):
        return True

    # The databases library wraps driver exceptions
    if exc.__cause__ is not None:
        return is_retryable_database_error(exc.__cause__, idempotent)

    return False


async def execute_with_retry(
    func: Callable[..., Awaitable[T]],
    *args,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    idempotent: bool = True,
    **kwargs,
) -> T:
    """
    Execute an async function with retry logic for transient database errors.

    Uses exponential backoff with jitter to reduce contention.

    Raises:
        DatabaseRetryableError: If all retries are exhausted
        Other exceptions: Non-retryable errors are re-raised immediately
    """
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_database_error(e, idempotent):
                raise

            last_exception = e

            if attempt < max_retries:
                delay = min(base_delay * (DEFAULT_EXPONENTIAL_BASE**attempt), max_delay)
                # Jitter (±25%) to prevent thundering herd
                jitter = delay * 0.25 * (2 * random.random() - 1)
                delay = max(0.01, delay + jitter)

                logger.warning(
                    f"Database error (attempt {attempt + 1}/{max_retries + 1}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database error after {max_retries + 1} attempts, giving up: {e}")

    raise DatabaseRetryableError(f"Database operation failed after {max_retries + 1} attempts: {last_exception}")


async def _timed(query, call: Callable[[], Awaitable[Any]]) -> Any:
    start_time = time.monotonic()
    result = await call()
    elapsed = time.monotonic() - start_time
    if elapsed >= SLOW_QUERY_THRESHOLD:
        logger.warning(f"Slow query ({elapsed:.2f}s): {str(query)[:500]}")
    return result


async def fetch_one_with_retry(db: Database, query, idempotent: bool = True):
    """
    fetch_one with retries. Returns a single row or None.

    Pass idempotent=False for writes that must not be applied twice
    (UPDATE ... RETURNING counters).
    """
    return await execute_with_retry(_timed, query, lambda: db.fetch_one(query), idempotent=idempotent)


async def fetch_all_with_retry(db: Database, query):
    return await execute_with_retry(_timed, query, lambda: db.fetch_all(query))


async def fetch_val_with_retry(db: Database, query):
    return await execute_with_retry(_timed, query, lambda: db.fetch_val(query))


async def db_execute_with_retry(db: Database, query, values=None):
    """
    Execute a write with retries.

    Returns:
        The driver result (row count for UPDATE/DELETE on most backends)
    """
    if values is not None:
        return await execute_with_retry(_timed, query, lambda: db.execute(query, values))
    return await execute_with_retry(_timed, query, lambda: db.execute(query))
