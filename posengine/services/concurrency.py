# Overview: Retry and locking helpers shared by every unit of work.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InternalError, PosError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the BEGIN IMMEDIATE
    hook already serializes writers. Other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (busy/locked store) and StaleDataError
    (optimistic locking conflicts). func must be safe to call again after a
    rollback: it re-reads everything it needs.

    PosError from func rolls back and propagates unchanged. Exhausted
    retries surface as InternalError (retryable).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except PosError:
            session.rollback()
            raise
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            logger.warning("Unit of work failed (attempt %d/%d): %s", attempt + 1, attempts, exc)
            if attempt < attempts - 1:
                time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            session.rollback()
            raise
    raise InternalError(
        "Storage temporarily unavailable",
        details={"attempts": attempts, "cause": type(last_exc).__name__},
    ) from last_exc
