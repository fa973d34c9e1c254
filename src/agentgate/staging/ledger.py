"""Per-user idempotency ledger with time-bounded retention."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional, Tuple

from ..workspace.schema import utc_now

LOGGER = logging.getLogger(__name__)


def _as_iso(timestamp: datetime) -> str:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


def create_key(agent_id: str, client_request_id: str) -> str:
    """Ledger key for a create operation's idempotency token."""
    return f"create:{agent_id}:{client_request_id}"


def confirm_key(draft_id: str) -> str:
    """Ledger key guarding the single confirmation of a draft."""
    return f"confirm:{draft_id}"


def encode_created(entity_id: int, fingerprint: str) -> str:
    """Ledger value for a create: the new entity id and a hash of the fields it was created with."""
    return json.dumps({"id": entity_id, "fingerprint": fingerprint}, sort_keys=True)


def decode_created(value: Optional[str]) -> Optional[Tuple[int, str]]:
    """Inverse of :func:`encode_created`; ``None`` for values it did not write."""
    if not value:
        return None
    try:
        payload = json.loads(value)
        return int(payload["id"]), str(payload["fingerprint"])
    except (ValueError, TypeError, KeyError):
        return None


class IdempotencyLedger:
    """Records keys per user so repeated effects can be detected and skipped.

    Entries older than ``ttl`` are invisible to :meth:`seen` and :meth:`lookup`
    and are physically removed by :meth:`evict`.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        lock: threading.RLock,
        *,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._conn = connection
        self._lock = lock
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _cutoff(self, now: Optional[datetime]) -> str:
        return _as_iso((now or self._clock()) - self._ttl)

    def record(self, user_id: str, key: str, value: Optional[str] = None, *, now: Optional[datetime] = None) -> None:
        """Store ``key`` for ``user_id``, replacing any earlier entry."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO idempotency_keys (user_id, key, value, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, key) DO UPDATE SET
                    value = excluded.value,
                    created_at = excluded.created_at
                """,
                (user_id, key, value, _as_iso(now or self._clock())),
            )

    def lookup(self, user_id: str, key: str, *, now: Optional[datetime] = None) -> Optional[str]:
        """Return the value stored under ``key``; ``None`` when absent, expired, or stored without a value."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM idempotency_keys WHERE user_id = ? AND key = ? AND created_at > ?",
                (user_id, key, self._cutoff(now)),
            ).fetchone()
        return row["value"] if row else None

    def seen(self, user_id: str, key: str, *, now: Optional[datetime] = None) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM idempotency_keys WHERE user_id = ? AND key = ? AND created_at > ?",
                (user_id, key, self._cutoff(now)),
            ).fetchone()
        return row is not None

    def claim(self, user_id: str, key: str, value: Optional[str] = None, *, now: Optional[datetime] = None) -> bool:
        """Insert ``key`` only if no live entry exists; exactly one concurrent caller wins."""
        moment = now or self._clock()
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM idempotency_keys WHERE user_id = ? AND key = ? AND created_at <= ?",
                (user_id, key, self._cutoff(moment)),
            )
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO idempotency_keys (user_id, key, value, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, key, value, _as_iso(moment)),
            )
            return cursor.rowcount == 1

    def release(self, user_id: str, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM idempotency_keys WHERE user_id = ? AND key = ?", (user_id, key))

    def evict(self, *, now: Optional[datetime] = None) -> int:
        """Delete entries older than the TTL and return how many were removed."""
        with self._transaction() as conn:
            removed = conn.execute(
                "DELETE FROM idempotency_keys WHERE created_at <= ?", (self._cutoff(now),)
            ).rowcount
        if removed:
            LOGGER.info("Evicted %d idempotency key(s)", removed)
        return removed


__all__ = ["IdempotencyLedger", "confirm_key", "create_key", "decode_created", "encode_created"]
