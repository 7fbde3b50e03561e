"""Durable storage for TCR sessions and the active session pointer."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import timezone
from pathlib import Path
from typing import Iterator, List, Optional

from .schema import Session, utc_now

DEFAULT_DB_PATH = Path(".tcr/sessions.sqlite")
LOGGER = logging.getLogger(__name__)


class SessionStore:
    """SQLite-backed persistence scoped to a single workspace.

    The active pointer is a foreign key onto ``sessions`` so it can only ever
    name a stored session.
    """

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path).resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = self._open_connection()
        self._bootstrap()

    def close(self) -> None:
        if getattr(self, "_conn", None) is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "SessionStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path))
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Session store is closed.")
        return self._conn

    def _bootstrap(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                payload TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_sessions_created
                ON sessions(created_at);

            CREATE TABLE IF NOT EXISTS active_session (
                slot INTEGER PRIMARY KEY CHECK (slot = 1),
                session_id TEXT NOT NULL,
                FOREIGN KEY(session_id) REFERENCES sessions(id)
            );
            """
        )
        self.conn.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        connection = self.conn
        try:
            yield connection
        except Exception:
            connection.rollback()
            raise
        else:
            connection.commit()

    @staticmethod
    def _upsert(connection: sqlite3.Connection, session: Session) -> None:
        created = session.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        connection.execute(
            """
            INSERT INTO sessions (id, status, created_at, updated_at, payload)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                updated_at = excluded.updated_at,
                payload = excluded.payload
            """,
            (
                session.id,
                session.status.value,
                created.astimezone(timezone.utc).isoformat(),
                utc_now().isoformat(),
                session.model_dump_json(),
            ),
        )

    @staticmethod
    def _point_active(connection: sqlite3.Connection, session_id: str) -> None:
        connection.execute(
            """
            INSERT INTO active_session (slot, session_id) VALUES (1, ?)
            ON CONFLICT(slot) DO UPDATE SET session_id = excluded.session_id
            """,
            (session_id,),
        )

    # ---------------------------------------------------------------- writes
    def save(self, session: Session) -> None:
        """Insert or replace ``session`` without touching the active pointer."""
        with self._transaction() as connection:
            self._upsert(connection, session)

    def save_and_activate(self, session: Session) -> None:
        """Persist ``session`` and make it the active one in a single transaction."""
        with self._transaction() as connection:
            self._upsert(connection, session)
            self._point_active(connection, session.id)
        LOGGER.debug("Active session set to %s", session.id)

    def set_active(self, session_id: str) -> Session:
        """Point the active session at an existing entry and return it."""
        session = self.get(session_id)
        if session is None:
            raise KeyError(session_id)
        with self._transaction() as connection:
            self._point_active(connection, session_id)
        LOGGER.debug("Active session set to %s", session_id)
        return session

    # ----------------------------------------------------------------- reads
    def get(self, session_id: str) -> Optional[Session]:
        row = self.conn.execute("SELECT payload FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        return Session.model_validate_json(row["payload"])

    def exists(self, session_id: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return row is not None

    def get_active(self) -> Optional[Session]:
        row = self.conn.execute(
            """
            SELECT s.payload FROM active_session a
            JOIN sessions s ON s.id = a.session_id
            WHERE a.slot = 1
            """
        ).fetchone()
        if row is None:
            return None
        return Session.model_validate_json(row["payload"])

    def list_sessions(self) -> List[Session]:
        """Return every stored session, newest first."""
        rows = self.conn.execute(
            "SELECT payload FROM sessions ORDER BY created_at DESC, id DESC"
        ).fetchall()
        return [Session.model_validate_json(row["payload"]) for row in rows]


__all__ = ["DEFAULT_DB_PATH", "SessionStore"]
