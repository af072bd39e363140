"""SQLite persistence for session records and small key/value state.

The session registry and the focus state live here. Runtime statuses are
owned by the watch process; it only saves a snapshot of them (under
STATUS_SNAPSHOT_KEY) so that other processes can display them.
"""

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from fleet.core.errors import SessionExistsError
from fleet.core.models import FocusState, RuntimeStatus, Session

FOCUS_STATE_KEY = "focus_state"
STATUS_SNAPSHOT_KEY = "status_snapshot"


class Database:
    """SQLite database holding the session registry and key/value state."""

    SCHEMA = """
    -- Session registry (one row per tracked directory)
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        directory TEXT NOT NULL UNIQUE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    -- Small persisted values (focus state)
    CREATE TABLE IF NOT EXISTS kv (
        key TEXT PRIMARY KEY,
        value JSON NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_sessions_created ON sessions(created_at);
    """

    def __init__(self, db_path: str | Path = "~/.agent-fleet/state.db"):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema and enable WAL mode for better concurrency."""
        with self._connect() as conn:
            # WAL lets the watch loop read while a CLI command writes
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(self.SCHEMA)

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections.

        Uses a 30-second busy timeout to handle concurrent access gracefully
        instead of immediately failing with "database is locked".
        """
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 30000")
        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if "database is locked" in str(e):
                raise sqlite3.OperationalError(
                    f"Database locked after 30s timeout. Check for long-running transactions: {e}"
                ) from e
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # --- Sessions ---

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            name=row["name"],
            directory=row["directory"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def add_session(self, session: Session) -> None:
        """Insert a session.

        Raises:
            SessionExistsError: If a session already tracks the same directory
        """
        existing = self.get_session_by_directory(session.directory)
        if existing:
            raise SessionExistsError(session.directory, existing.name)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO sessions (id, name, directory, created_at) VALUES (?, ?, ?, ?)",
                    (session.id, session.name, session.directory, session.created_at.isoformat()),
                )
        except sqlite3.IntegrityError as e:
            # Lost a race with another process adding the same directory
            raise SessionExistsError(session.directory, session.name) from e

    def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            return self._row_to_session(row) if row else None

    def get_session_by_directory(self, directory: str) -> Session | None:
        """Get the session tracking a (normalized) directory."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE directory = ?", (directory,)
            ).fetchone()
            return self._row_to_session(row) if row else None

    def list_sessions(self) -> list[Session]:
        """List all sessions in creation order."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM sessions ORDER BY created_at, id").fetchall()
            return [self._row_to_session(row) for row in rows]

    def remove_session(self, session_id: str) -> bool:
        """Delete a session. Returns True if a row was removed."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            return cursor.rowcount > 0

    # --- Key/value ---

    def put(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under key (upsert)."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, json.dumps(value)),
            )

    def get(self, key: str, default: Any = None) -> Any:
        """Load a value stored with put(), or default if missing."""
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            if not row:
                return default
            return json.loads(row["value"])

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    # --- Focus state ---

    def load_focus_state(self) -> FocusState:
        """Load the persisted focus state (empty if never saved or corrupt)."""
        raw = self.get(FOCUS_STATE_KEY)
        if not isinstance(raw, dict):
            return FocusState()
        try:
            return FocusState.model_validate(raw)
        except ValueError:
            return FocusState()

    def save_focus_state(self, state: FocusState) -> None:
        self.put(FOCUS_STATE_KEY, state.model_dump(mode="json"))

    # --- Status snapshot ---

    def load_status_snapshot(self) -> dict[str, RuntimeStatus]:
        """Last saved directory -> status map; unknown values are dropped."""
        raw = self.get(STATUS_SNAPSHOT_KEY)
        if not isinstance(raw, dict):
            return {}
        snapshot = {}
        for directory, value in raw.items():
            try:
                snapshot[directory] = RuntimeStatus(value)
            except ValueError:
                continue
        return snapshot

    def save_status_snapshot(self, statuses: dict[str, RuntimeStatus]) -> None:
        self.put(STATUS_SNAPSHOT_KEY, {d: s.value for d, s in statuses.items()})
