"""Durable record of messages whose side effects have already been applied."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Generator, Optional

from loguru import logger

from inbox_triage.errors import StoreError
from inbox_triage.models import ProcessedRecord

SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS emails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gmail_id TEXT UNIQUE NOT NULL,
    from_addr TEXT,
    subject TEXT,
    category TEXT,
    label TEXT,
    draft TEXT,
    created_at INTEGER
);
"""


class KeyedLocks:
    """One lock per key, alive only while some thread holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class IdempotencyStore:
    """SQLite-backed idempotency barrier.

    ``commit`` is an ``INSERT OR IGNORE`` on the unique ``gmail_id`` column, so
    repeated commits are harmless. ``claim`` serializes the check-then-commit
    sequence of a single message id across worker threads.
    """

    def __init__(self, db_path: str | Path, *, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self._timeout = timeout
        self._claims = KeyedLocks()
        self._ensure_db()

    def _ensure_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript(SCHEMA)
        logger.info(f"Idempotency store ready at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self._timeout)
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def claim(self, message_id: str) -> Generator[None, None, None]:
        with self._claims.hold(message_id):
            yield

    def already_committed(self, message_id: str) -> bool:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM emails WHERE gmail_id = ? LIMIT 1",
                (message_id,),
            ).fetchone()
        return row is not None

    def commit(self, record: ProcessedRecord) -> bool:
        """Insert the record; returns False when the id was already committed."""
        with self._connection() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO emails
                   (gmail_id, from_addr, subject, category, label, draft, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.message_id,
                    record.sender,
                    record.subject,
                    record.category,
                    record.label,
                    record.draft,
                    int(record.created_at.timestamp()),
                ),
            )
            inserted = cursor.rowcount == 1
        if not inserted:
            logger.debug(f"Message {record.message_id} was already committed")
        return inserted

    def get(self, message_id: str) -> Optional[ProcessedRecord]:
        with self._connection() as conn:
            row = conn.execute(
                """SELECT gmail_id, from_addr, subject, category, label, draft, created_at
                   FROM emails WHERE gmail_id = ?""",
                (message_id,),
            ).fetchone()
        if row is None:
            return None
        return ProcessedRecord(
            message_id=row["gmail_id"],
            sender=row["from_addr"] or "",
            subject=row["subject"] or "",
            category=row["category"] or "",
            label=row["label"] or "",
            draft=row["draft"] or "",
            created_at=datetime.fromtimestamp(row["created_at"] or 0, tz=timezone.utc),
        )

    def count(self) -> int:
        with self._connection() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM emails").fetchone()[0])
