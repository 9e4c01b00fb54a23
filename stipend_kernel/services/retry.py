"""
Retry wrapper for units of work that may hit a lock conflict.

``run_with_retry`` runs ``fn(session)`` in its own transaction.  On
ConcurrencyConflictError the transaction is rolled back and the whole unit
of work is run once more in a fresh session; a second conflict propagates.
Every other error propagates immediately after rollback.

Services notify as they flush, so ``fn`` should hand them a
``CommitBoundNotificationSink`` built on the session it is given; a rolled
back attempt then sends nothing.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from stipend_kernel.exceptions import ConcurrencyConflictError
from stipend_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

MAX_ATTEMPTS = 2


def run_with_retry(
    fn: Callable[[Session], T],
    session_factory: Callable[[], Session],
    operation: str = "unit_of_work",
) -> T:
    for attempt in range(1, MAX_ATTEMPTS + 1):
        session = session_factory()
        try:
            result = fn(session)
            session.commit()
            return result
        except ConcurrencyConflictError:
            session.rollback()
            if attempt == MAX_ATTEMPTS:
                logger.error(
                    "retry_exhausted",
                    extra={"operation": operation, "attempts": attempt},
                )
                raise
            logger.warning(
                "retrying_after_conflict",
                extra={"operation": operation, "attempt": attempt},
            )
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
    raise AssertionError("unreachable")
