"""SQLite database helpers for the conversation schema."""

from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Iterable

from .config import DEFAULT_DB_PATH

DDL_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        title TEXT NOT NULL,
        provider TEXT NOT NULL DEFAULT 'unknown',
        model_name TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        is_archived INTEGER NOT NULL DEFAULT 0,
        thread_id TEXT,
        row_version INTEGER NOT NULL DEFAULT 1
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id, updated_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
        role TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        timestamp TEXT NOT NULL,
        token_count INTEGER,
        is_processing INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS file_operations (
        message_id TEXT PRIMARY KEY REFERENCES messages(id) ON DELETE CASCADE,
        action TEXT NOT NULL,
        file_path TEXT NOT NULL,
        timestamp TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS action_cards (
        id TEXT PRIMARY KEY,
        message_id TEXT NOT NULL UNIQUE REFERENCES messages(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        status TEXT NOT NULL,
        operation TEXT NOT NULL DEFAULT '',
        status_message TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        completed_at TEXT,
        reasoning TEXT NOT NULL DEFAULT '',
        warnings_json TEXT NOT NULL DEFAULT '[]',
        needs_confirmation INTEGER NOT NULL DEFAULT 1,
        reflection_key TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_action_cards_key ON action_cards(reflection_key)",
    """
    CREATE TABLE IF NOT EXISTS planned_actions (
        id TEXT PRIMARY KEY,
        action_card_id TEXT NOT NULL REFERENCES action_cards(id) ON DELETE CASCADE,
        type TEXT NOT NULL,
        source TEXT NOT NULL DEFAULT '',
        destination TEXT,
        description TEXT NOT NULL DEFAULT '',
        operation TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        sort_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_planned_actions_card ON planned_actions(action_card_id, sort_order)",
)


class DatabaseService:
    """Manage SQLite connections and schema initialization."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH

    def _ensure_directory(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        """Return a connection with row access by name and cascades enabled."""
        self._ensure_directory()
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self, statements: Iterable[str] | None = None) -> Path:
        """Create all schema artifacts required for conversation storage."""
        conn = self.connect()
        try:
            with conn:  # Transactional apply of DDL
                for statement in statements or DDL_STATEMENTS:
                    conn.execute(statement)
        finally:
            conn.close()
        return self.db_path


def init_database(db_path: str | Path | None = None) -> Path:
    """Create the schema at db_path (or the default location)."""
    return DatabaseService(db_path).initialize()


__all__ = ["DatabaseService", "init_database", "DDL_STATEMENTS", "DEFAULT_DB_PATH"]
