"""
Subscription store: the only durable state owned by the push core.

Writes for a given endpoint are serialized twice over: an in-process lock per
endpoint (delivery workers and API handlers share one store), and a single
transaction that reads the row ``FOR UPDATE`` before changing it (other
processes sharing the database). SQLite ignores ``FOR UPDATE``; its writer lock
gives the same guarantee.

Every SQLAlchemy failure is rolled back and re-raised as ``StoreError``.
"""

import enum
import logging
import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from weatherpush.models.push_subscription import PushSubscription
from weatherpush.push.errors import StoreError
from weatherpush.push.records import Outcome, Subscription

logger = logging.getLogger(__name__)


class StoreAction(str, enum.Enum):
    UPDATED = "updated"
    PRUNED = "pruned"
    UNCHANGED = "unchanged"
    MISSING = "missing"


class _LockEntry:
    __slots__ = ("lock", "__weakref__")

    def __init__(self):
        self.lock = threading.Lock()


class _EndpointLocks:
    """One lock per endpoint, dropped once nobody holds a reference to it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: weakref.WeakValueDictionary[str, _LockEntry] = weakref.WeakValueDictionary()

    @contextmanager
    def hold(self, endpoint: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(endpoint)
            if entry is None:
                entry = _LockEntry()
                self._entries[endpoint] = entry
        with entry.lock:
            yield


def _to_record(row: PushSubscription) -> Subscription:
    return Subscription(
        endpoint=row.endpoint,
        p256dh=row.p256dh,
        auth=row.auth,
        created_at=row.created_at,
        last_success_at=row.last_success_at,
        consecutive_failures=row.consecutive_failures or 0,
    )


class SubscriptionStore:
    def __init__(self, session_factory: sessionmaker, *, failure_ceiling: int = 5):
        if failure_ceiling < 1:
            raise ValueError("failure_ceiling must be at least 1")
        self._session_factory = session_factory
        self._locks = _EndpointLocks()
        self.failure_ceiling = failure_ceiling

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(f"subscription store failure: {exc}") from exc
        finally:
            session.close()

    def _locked_row(self, session: Session, endpoint: str) -> PushSubscription | None:
        stmt = select(PushSubscription).where(PushSubscription.endpoint == endpoint).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def put(self, subscription: Subscription) -> Subscription:
        """Insert or replace the subscription for ``subscription.endpoint``.

        Keys are overwritten and health metadata is reset: a re-subscribe is a
        fresh start for that endpoint.
        """
        with self._locks.hold(subscription.endpoint):
            try:
                return self._put(subscription)
            except StoreError as exc:
                # Another process inserted the same endpoint between our read and write
                if not isinstance(exc.__cause__, IntegrityError):
                    raise
                return self._put(subscription)

    def _put(self, subscription: Subscription) -> Subscription:
        with self._transaction() as session:
            row = self._locked_row(session, subscription.endpoint)
            if row is None:
                row = PushSubscription(endpoint=subscription.endpoint)
                session.add(row)
            row.p256dh = subscription.p256dh
            row.auth = subscription.auth
            row.consecutive_failures = 0
            row.last_success_at = None
            session.flush()
            session.refresh(row)
            return _to_record(row)

    def remove(self, endpoint: str) -> bool:
        """Delete the subscription. Returns False if it did not exist; never raises for that."""
        with self._locks.hold(endpoint):
            with self._transaction() as session:
                result = session.execute(delete(PushSubscription).where(PushSubscription.endpoint == endpoint))
                return result.rowcount > 0

    def get(self, endpoint: str) -> Subscription | None:
        with self._transaction() as session:
            stmt = select(PushSubscription).where(PushSubscription.endpoint == endpoint)
            row = session.execute(stmt).scalar_one_or_none()
            return _to_record(row) if row is not None else None

    def list_all(self) -> list[Subscription]:
        with self._transaction() as session:
            rows = session.execute(select(PushSubscription).order_by(PushSubscription.id)).scalars().all()
            return [_to_record(row) for row in rows]

    def record_outcome(self, endpoint: str, outcome: Outcome, now: datetime | None = None) -> StoreAction:
        """Apply one delivery outcome to the endpoint's health metadata.

        DELIVERED resets the failure counter and stamps last_success_at; GONE
        deletes the row; TRANSIENT increments the counter and deletes the row
        once it reaches ``failure_ceiling``; REJECTED leaves the row alone.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._locks.hold(endpoint):
            with self._transaction() as session:
                row = self._locked_row(session, endpoint)
                if row is None:
                    # Unsubscribed or pruned by a concurrent trigger while we were sending
                    return StoreAction.MISSING

                if outcome is Outcome.DELIVERED:
                    row.consecutive_failures = 0
                    row.last_success_at = now
                    return StoreAction.UPDATED

                if outcome is Outcome.GONE:
                    session.delete(row)
                    logger.info("Pruned push subscription %s (gone)", endpoint[:60])
                    return StoreAction.PRUNED

                if outcome is Outcome.TRANSIENT:
                    row.consecutive_failures = (row.consecutive_failures or 0) + 1
                    if row.consecutive_failures >= self.failure_ceiling:
                        session.delete(row)
                        logger.warning(
                            "Pruned push subscription %s after %d consecutive failures",
                            endpoint[:60],
                            row.consecutive_failures,
                        )
                        return StoreAction.PRUNED
                    return StoreAction.UPDATED

                return StoreAction.UNCHANGED
