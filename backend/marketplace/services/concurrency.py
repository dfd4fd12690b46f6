# Overview: Service-layer helpers for concurrency; row locks, retries and per-order leases.

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager

from sqlalchemy import delete, insert, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import SettlementLease
from ..time_utils import after, utcnow


class LeaseHeldError(RuntimeError):
    """Raised when another worker holds an unexpired lease for the order."""


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def acquire_order_lease(order_id: int, holder: str, ttl_seconds: int) -> None:
    """
    Take the settlement lease for an order or raise LeaseHeldError.

    Insert wins when no lease exists; an expired lease is taken over with a
    conditional UPDATE so two workers cannot both claim it.
    """
    now = utcnow()
    expires_at = after(now, seconds=ttl_seconds)

    try:
        db.session.execute(
            insert(SettlementLease).values(
                order_id=order_id,
                holder=holder,
                acquired_at=now,
                expires_at=expires_at,
            )
        )
        db.session.commit()
        return
    except IntegrityError:
        db.session.rollback()

    result = db.session.execute(
        update(SettlementLease)
        .where(SettlementLease.order_id == order_id)
        .where(SettlementLease.expires_at < now)
        .values(holder=holder, acquired_at=now, expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    if result.rowcount != 1:
        raise LeaseHeldError(f"Settlement already in progress for order {order_id}")


def release_order_lease(order_id: int, holder: str) -> None:
    db.session.execute(
        delete(SettlementLease)
        .where(SettlementLease.order_id == order_id)
        .where(SettlementLease.holder == holder)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


@contextmanager
def order_lease(order_id: int, *, ttl_seconds: int, holder: str | None = None):
    """Hold the per-order settlement lease for the duration of the block."""
    holder = holder or uuid.uuid4().hex
    acquire_order_lease(order_id, holder, ttl_seconds)
    try:
        yield holder
    finally:
        db.session.rollback()
        release_order_lease(order_id, holder)
