"""Retried read-compute-write transactions.

A unit of work receives a fresh session, reads aggregates, and writes them
back through version-checked updates. A zero-row update raises
VersionConflict; the runner rolls back and replays the whole unit of work
with exponential backoff, so the caller never sees a half-applied change.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from datacop_api.config.env import get_tx_base_delay_seconds, get_tx_max_attempts
from datacop_api.errors import DatacopError, MembershipConflict, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 1.0


class VersionConflict(Exception):
    """A version-checked write matched no row (another writer got there first)."""

    pass


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    return min(MAX_BACKOFF_SECONDS, base_delay * (2 ** (attempt - 1)))


def run_in_transaction(
    session_factory: Callable[[], Session],
    work: Callable[[Session], T],
    *,
    operation: str,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    conflict_error: type[DatacopError] = MembershipConflict,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``work`` in its own transaction, retrying on conflicts.

    Args:
        session_factory: Produces a new session per attempt
        work: Unit of work; must be safe to replay from scratch
        operation: Name used in log events
        max_attempts: Attempts before giving up (default MEMBERSHIP_TX_MAX_ATTEMPTS)
        base_delay: First backoff delay in seconds (default MEMBERSHIP_TX_BASE_DELAY_MS)
        conflict_error: Error raised when conflicts exhaust the attempts
        sleep: Injected for tests

    Returns:
        Whatever ``work`` returns, after a successful commit

    Raises:
        DatacopError: Domain errors from ``work`` propagate unchanged (rolled back)
        IntegrityError: Propagated for the caller to translate
        conflict_error: Optimistic conflicts on every attempt
        TransientStoreError: Store unavailable on every attempt, or unexpected store error
    """
    attempts = max_attempts if max_attempts is not None else get_tx_max_attempts()
    delay = base_delay if base_delay is not None else get_tx_base_delay_seconds()
    last_failure = "conflict"

    for attempt in range(1, attempts + 1):
        db = session_factory()
        try:
            result = work(db)
            db.commit()
            return result
        except VersionConflict as e:
            db.rollback()
            last_failure = "conflict"
            logger.warning(
                "tx.conflict.retry",
                extra={"operation": operation, "attempt": attempt, "max_attempts": attempts, "reason": str(e)},
            )
        except OperationalError as e:
            db.rollback()
            last_failure = "transient"
            logger.warning(
                "tx.transient.retry",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error_type": type(e).__name__,
                },
            )
        except IntegrityError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "tx.store_error",
                extra={"operation": operation, "error_type": type(e).__name__},
                exc_info=True,
            )
            raise TransientStoreError(f"Entity store error during {operation}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if attempt < attempts:
            sleep(backoff_delay(attempt, delay))

    logger.error(
        "tx.exhausted",
        extra={"operation": operation, "attempts": attempts, "failure": last_failure},
    )
    if last_failure == "transient":
        raise TransientStoreError(f"Entity store unavailable during {operation}; retry later")
    raise conflict_error(f"{operation} kept conflicting with concurrent updates after {attempts} attempts")
