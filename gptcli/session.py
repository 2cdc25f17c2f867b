"""Persisted chat sessions, stored in a local SQLite database."""

import json
import os
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from .config import global_config_dir
from .errors import ConfigError
from .llm import Message

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    session_id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '[]',
    created_at_usec INTEGER NOT NULL,
    updated_at_usec INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sessions_created ON sessions (created_at_usec);
CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions (updated_at_usec);
"""


def _now_usec() -> int:
    return time.time_ns() // 1000


@dataclass
class SessionRecord:
    session_id: str = ""
    name: str = ""
    content: str = "[]"
    created_at_usec: int = 0
    updated_at_usec: int = 0

    @property
    def messages(self) -> list[Message]:
        return [Message.from_dict(m) for m in json.loads(self.content or "[]")]

    @messages.setter
    def messages(self, messages: list[Message]) -> None:
        self.content = json.dumps([m.to_dict() for m in messages])


def default_db_path(configured: str | None = None) -> Path:
    """GPT_DB_PATH env var, then the configured path, then the config dir."""
    env = os.environ.get("GPT_DB_PATH")
    if env:
        return Path(env)
    if configured:
        return Path(configured).expanduser()
    return global_config_dir() / "gpt.db"


class SessionStore:
    """Sessions keyed by a generated uuid."""

    def __init__(self, path: Path):
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path)
            self._conn.executescript(_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise ConfigError(f"cannot open session database {self.path}: {e}") from e
        self._conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SessionStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def save(self, record: SessionRecord) -> SessionRecord:
        """Insert or update ``record``, filling in its id and timestamps."""
        now = _now_usec()
        if not record.session_id:
            record.session_id = str(uuid.uuid4())
        if not record.created_at_usec:
            record.created_at_usec = now
        record.updated_at_usec = now
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO sessions "
                "(session_id, name, content, created_at_usec, updated_at_usec) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    record.session_id,
                    record.name,
                    record.content,
                    record.created_at_usec,
                    record.updated_at_usec,
                ),
            )
        return record

    def list_sessions(self) -> list[SessionRecord]:
        """All sessions, most recently updated first."""
        rows = self._conn.execute(
            "SELECT * FROM sessions ORDER BY updated_at_usec DESC"
        ).fetchall()
        return [SessionRecord(**dict(row)) for row in rows]

    def get(self, session_id: str) -> SessionRecord | None:
        row = self._conn.execute(
            "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
        ).fetchone()
        return SessionRecord(**dict(row)) if row else None

    def find_by_name(self, name: str) -> SessionRecord | None:
        """The most recently updated session with this name."""
        row = self._conn.execute(
            "SELECT * FROM sessions WHERE name = ? "
            "ORDER BY updated_at_usec DESC LIMIT 1",
            (name,),
        ).fetchone()
        return SessionRecord(**dict(row)) if row else None
