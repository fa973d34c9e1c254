"""Durable SQLite storage for drafts, confirmation tokens and idempotency keys.

Every state transition is a compare-and-set: an ``UPDATE ... WHERE status = ?``
whose row count tells the caller whether it won. One lock serializes use of the
shared connection so the store can be used from several request threads.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import sqlite3
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from ..workspace.schema import Scope, utc_now
from .ledger import IdempotencyLedger
from .schema import ConfirmationToken, Draft, DraftStatus

DEFAULT_DB_PATH = Path("data/agentgate.sqlite")
LOGGER = logging.getLogger(__name__)

_CLOSED_STATUSES = (DraftStatus.APPLIED, DraftStatus.EXPIRED, DraftStatus.REJECTED)


def _as_iso(timestamp: datetime) -> str:
    """Serialise a timestamp to a timezone-aware ISO 8601 string."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp produced by `_as_iso`."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def _dump_json(data: Any, *, default: Any) -> str:
    return json.dumps(default if data is None else data, sort_keys=True, separators=(",", ":"))


def _load_json(value: Optional[str], *, default: Any) -> Any:
    """Decode JSON columns while falling back to the provided default."""
    if not value:
        return default
    data = json.loads(value)
    if data is None:
        return default
    return data


class DraftStore:
    """SQLite-backed persistence for the draft/confirm/apply state machine."""

    @staticmethod
    def _is_writable(path: Path) -> bool:
        parent = path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        if path.exists():
            return os.access(path, os.W_OK)
        return os.access(parent, os.W_OK)

    @staticmethod
    def _fallback_db_path(source: Path) -> Path:
        digest = hashlib.sha1(source.as_posix().encode("utf-8")).hexdigest()[:12]
        fallback_dir = Path(tempfile.gettempdir()) / "agentgate" / "db" / digest
        fallback_dir.mkdir(parents=True, exist_ok=True)
        return fallback_dir / source.name

    @classmethod
    def _resolve_db_path(cls, requested: Path) -> Path:
        resolved = requested.resolve()
        if cls._is_writable(resolved):
            return resolved
        fallback = cls._fallback_db_path(resolved)
        if not fallback.exists():
            if resolved.exists() and os.access(resolved, os.R_OK):
                try:
                    shutil.copy2(resolved, fallback)
                except OSError:
                    fallback.touch(exist_ok=True)
            else:
                fallback.touch(exist_ok=True)
        if not cls._is_writable(fallback):
            raise OSError(f"Unable to locate writable database path (attempted {requested})")
        return fallback

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH, *, ledger_ttl: timedelta = timedelta(hours=24)) -> None:
        requested_path = Path(db_path)
        self.db_path = self._resolve_db_path(requested_path)
        if self.db_path != requested_path.resolve():
            LOGGER.warning(
                "Database path %s is not writable; using fallback %s",
                requested_path,
                self.db_path,
            )
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = self._open_connection()
        self._bootstrap()
        self.ledger = IdempotencyLedger(self._conn, self._lock, ttl=ledger_ttl)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                finally:
                    self._conn = None

    def __enter__(self) -> "DraftStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "DraftStore":
        from ..config import AgentSettings

        settings = AgentSettings.from_config(config)
        return cls(settings.db_path, ledger_ttl=timedelta(hours=settings.ledger_ttl_hours))

    def _bootstrap(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS drafts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                agent_id TEXT NOT NULL,
                scope TEXT NOT NULL,
                message TEXT NOT NULL,
                plan TEXT NOT NULL,
                plan_hash TEXT NOT NULL,
                status TEXT NOT NULL,
                results TEXT,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                confirmed_at TEXT,
                applied_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_drafts_user_status
                ON drafts(user_id, status);

            CREATE TABLE IF NOT EXISTS confirmation_tokens (
                token TEXT PRIMARY KEY,
                draft_id TEXT NOT NULL UNIQUE,
                user_id TEXT NOT NULL,
                plan_hash TEXT NOT NULL,
                created_at TEXT NOT NULL,
                consumed_at TEXT,
                FOREIGN KEY(draft_id) REFERENCES drafts(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS idempotency_keys (
                user_id TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT,
                created_at TEXT NOT NULL,
                PRIMARY KEY (user_id, key)
            );
            CREATE INDEX IF NOT EXISTS idx_idempotency_created
                ON idempotency_keys(created_at);
            """
        )
        self._conn.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    # Draft operations ----------------------------------------------------------------
    def create_draft(self, draft: Draft) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO drafts (
                    id, user_id, agent_id, scope, message, plan, plan_hash, status, results,
                    created_at, expires_at, updated_at, confirmed_at, applied_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    draft.draft_id,
                    draft.user_id,
                    draft.agent_id,
                    _dump_json(draft.scope.model_dump(mode="json", by_alias=True), default={}),
                    draft.message,
                    _dump_json(draft.plan, default={}),
                    draft.plan_hash,
                    draft.status.value,
                    _dump_json(draft.results, default=None) if draft.results is not None else None,
                    _as_iso(draft.created_at),
                    _as_iso(draft.expires_at),
                    _as_iso(draft.updated_at),
                    _as_iso(draft.confirmed_at) if draft.confirmed_at else None,
                    _as_iso(draft.applied_at) if draft.applied_at else None,
                ),
            )

    def get_draft(self, draft_id: str) -> Optional[Draft]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM drafts WHERE id = ?", (draft_id,)).fetchone()
        return self._row_to_draft(row) if row else None

    def list_drafts(
        self,
        *,
        user_id: Optional[str] = None,
        statuses: Optional[Sequence[DraftStatus]] = None,
    ) -> List[Draft]:
        query = "SELECT * FROM drafts"
        clauses: List[str] = []
        params: List[Any] = []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if statuses:
            placeholders = ",".join("?" for _ in statuses)
            clauses.append(f"status IN ({placeholders})")
            params.extend(status.value for status in statuses)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id ASC"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_draft(row) for row in rows]

    def transition(
        self,
        draft_id: str,
        expected: DraftStatus,
        target: DraftStatus,
        *,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move ``draft_id`` from ``expected`` to ``target``; ``False`` if another caller won."""
        timestamp = _as_iso(now or utc_now())
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE drafts SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (target.value, timestamp, draft_id, expected.value),
            )
            changed = cursor.rowcount == 1
        if changed:
            LOGGER.info("Draft %s: %s -> %s", draft_id, expected.value, target.value)
        return changed

    def confirm(self, draft_id: str, token: ConfirmationToken, *, now: datetime) -> bool:
        """Atomically move a proposed draft to confirmed and store its token."""
        timestamp = _as_iso(now)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE drafts SET status = ?, confirmed_at = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    DraftStatus.CONFIRMED.value,
                    timestamp,
                    timestamp,
                    draft_id,
                    DraftStatus.PROPOSED.value,
                ),
            )
            if cursor.rowcount != 1:
                return False
            conn.execute("DELETE FROM confirmation_tokens WHERE draft_id = ?", (draft_id,))
            conn.execute(
                """
                INSERT INTO confirmation_tokens (token, draft_id, user_id, plan_hash, created_at, consumed_at)
                VALUES (?, ?, ?, ?, ?, NULL)
                """,
                (token.token, token.draft_id, token.user_id, token.plan_hash, _as_iso(token.created_at)),
            )
        LOGGER.info("Draft %s: proposed -> confirmed", draft_id)
        return True

    def mark_applied(self, draft_id: str, results: Dict[str, Any], *, now: datetime) -> bool:
        """Close an applying draft with its results."""
        timestamp = _as_iso(now)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE drafts SET status = ?, results = ?, applied_at = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    DraftStatus.APPLIED.value,
                    _dump_json(results, default={}),
                    timestamp,
                    timestamp,
                    draft_id,
                    DraftStatus.APPLYING.value,
                ),
            )
            changed = cursor.rowcount == 1
        if changed:
            LOGGER.info("Draft %s: applying -> applied", draft_id)
        return changed

    def reject(self, draft_id: str, *, now: datetime) -> bool:
        """Close an open draft; returns ``False`` when it was no longer open."""
        for status in (DraftStatus.PROPOSED, DraftStatus.CONFIRMED):
            if self.transition(draft_id, status, DraftStatus.REJECTED, now=now):
                return True
        return False

    # Token operations ----------------------------------------------------------------
    def get_token(self, token: str) -> Optional[ConfirmationToken]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM confirmation_tokens WHERE token = ?", (token,)
            ).fetchone()
        return self._row_to_token(row) if row else None

    def token_for_draft(self, draft_id: str) -> Optional[ConfirmationToken]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM confirmation_tokens WHERE draft_id = ?", (draft_id,)
            ).fetchone()
        return self._row_to_token(row) if row else None

    def consume_token(self, token: str, *, now: datetime) -> bool:
        """Mark ``token`` consumed; exactly one caller can succeed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE confirmation_tokens SET consumed_at = ? WHERE token = ? AND consumed_at IS NULL",
                (_as_iso(now), token),
            )
            return cursor.rowcount == 1

    def release_token(self, token: str) -> None:
        """Undo a consumption whose apply was rolled back."""
        with self._transaction() as conn:
            conn.execute("UPDATE confirmation_tokens SET consumed_at = NULL WHERE token = ?", (token,))

    # Maintenance ---------------------------------------------------------------------
    def sweep(self, *, now: datetime, retention: timedelta) -> Dict[str, int]:
        """Expire overdue open drafts, delete old closed drafts, evict stale ledger keys."""
        now_iso = _as_iso(now)
        cutoff = _as_iso(now - retention)
        closed = [status.value for status in _CLOSED_STATUSES]
        with self._transaction() as conn:
            expired = conn.execute(
                """
                UPDATE drafts SET status = ?, updated_at = ?
                WHERE status IN (?, ?) AND expires_at <= ?
                """,
                (
                    DraftStatus.EXPIRED.value,
                    now_iso,
                    DraftStatus.PROPOSED.value,
                    DraftStatus.CONFIRMED.value,
                    now_iso,
                ),
            ).rowcount
            deleted = conn.execute(
                f"DELETE FROM drafts WHERE status IN ({','.join('?' for _ in closed)}) AND updated_at < ?",
                (*closed, cutoff),
            ).rowcount
        evicted = self.ledger.evict(now=now)
        summary = {"expired": expired, "deleted": deleted, "evicted": evicted}
        LOGGER.info("Sweep finished: %s", summary)
        return summary

    # Row mapping ---------------------------------------------------------------------
    @staticmethod
    def _row_to_draft(row: sqlite3.Row) -> Draft:
        return Draft(
            draft_id=row["id"],
            user_id=row["user_id"],
            agent_id=row["agent_id"],
            scope=Scope.model_validate(_load_json(row["scope"], default={})),
            message=row["message"],
            plan=_load_json(row["plan"], default={}),
            plan_hash=row["plan_hash"],
            status=DraftStatus(row["status"]),
            results=_load_json(row["results"], default=None),
            created_at=_from_iso(row["created_at"]),
            expires_at=_from_iso(row["expires_at"]),
            updated_at=_from_iso(row["updated_at"]),
            confirmed_at=_from_iso(row["confirmed_at"]),
            applied_at=_from_iso(row["applied_at"]),
        )

    @staticmethod
    def _row_to_token(row: sqlite3.Row) -> ConfirmationToken:
        return ConfirmationToken(
            token=row["token"],
            draft_id=row["draft_id"],
            user_id=row["user_id"],
            plan_hash=row["plan_hash"],
            created_at=_from_iso(row["created_at"]),
            consumed_at=_from_iso(row["consumed_at"]),
        )


__all__ = ["DEFAULT_DB_PATH", "DraftStore"]
