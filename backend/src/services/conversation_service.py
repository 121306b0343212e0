"""Conversation Service - CRUD operations for conversations and messages."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from ..models.conversation import (
    Conversation,
    ConversationSummary,
    FileOperation,
    FileOperationAction,
    LlmProvider,
    Message,
    MessageRole,
)
from ..models.reflection import (
    ActionCardPayload,
    ActionCardStatus,
    ActionType,
    PlannedActionPayload,
    ReflectionMetadata,
)
from .database import DatabaseService
from .errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ConversationService:
    """Service for conversation and message persistence."""

    def __init__(self, db_service: DatabaseService | None = None):
        """Initialize with database service."""
        self._db = db_service or DatabaseService()

    # =========================================================================
    # Conversations
    # =========================================================================

    def create_conversation(
        self,
        title: str,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        provider: LlmProvider = LlmProvider.UNKNOWN,
        model_name: Optional[str] = None,
    ) -> Conversation:
        """Insert a new conversation. An explicit id is honoured when given."""
        conversation_id = conversation_id or str(uuid.uuid4())
        now = _utcnow().isoformat()
        conn = self._db.connect()
        try:
            conn.execute(
                """
                INSERT INTO conversations
                (id, user_id, title, provider, model_name, created_at, updated_at, is_archived, row_version)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, 1)
                """,
                (conversation_id, user_id, title, provider.value, model_name, now, now),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ConflictError(
                f"Conversation {conversation_id} already exists",
                {"conversation_id": conversation_id},
            ) from e
        finally:
            conn.close()

        logger.info(f"Created conversation {conversation_id}", extra={"user_id": user_id})
        return Conversation(
            id=conversation_id,
            user_id=user_id,
            title=title,
            provider=provider,
            model_name=model_name,
            created_at=datetime.fromisoformat(now),
            updated_at=datetime.fromisoformat(now),
        )

    def get_conversation(
        self, conversation_id: str, include_messages: bool = False
    ) -> Optional[Conversation]:
        """Get a conversation, optionally with its full message history."""
        conn = self._db.connect()
        try:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if row is None:
                return None
            conversation = self._row_to_conversation(row)
            if include_messages:
                conversation.messages = self._load_messages(conn, conversation_id)
            return conversation
        finally:
            conn.close()

    def list_conversations(
        self,
        user_id: Optional[str] = None,
        include_archived: bool = False,
        skip: int = 0,
        take: int = 20,
    ) -> List[ConversationSummary]:
        """List conversations, most recently updated first."""
        take = max(1, min(take, MAX_PAGE_SIZE))
        skip = max(0, skip)
        clauses = []
        params: list = []
        if user_id is not None:
            clauses.append("c.user_id = ?")
            params.append(user_id)
        if not include_archived:
            clauses.append("c.is_archived = 0")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self._db.connect()
        try:
            rows = conn.execute(
                f"""
                SELECT c.*, (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) AS message_count
                FROM conversations c
                {where}
                ORDER BY c.updated_at DESC
                LIMIT ? OFFSET ?
                """,
                (*params, take, skip),
            ).fetchall()
            return [
                ConversationSummary(
                    id=row["id"],
                    title=row["title"],
                    provider=LlmProvider(row["provider"]),
                    model_name=row["model_name"],
                    created_at=datetime.fromisoformat(row["created_at"]),
                    updated_at=datetime.fromisoformat(row["updated_at"]),
                    is_archived=bool(row["is_archived"]),
                    message_count=row["message_count"],
                )
                for row in rows
            ]
        finally:
            conn.close()

    def update_conversation(
        self,
        conversation_id: str,
        *,
        expected_version: Optional[int] = None,
        title: Optional[str] = None,
        provider: Optional[LlmProvider] = None,
        model_name: Optional[str] = None,
        thread_id: Optional[str] = None,
        is_archived: Optional[bool] = None,
    ) -> Conversation:
        """Update conversation fields and bump updated_at and row_version.

        Raises:
            NotFoundError: If the conversation does not exist.
            ConflictError: If expected_version no longer matches the stored row.
        """
        conn = self._db.connect()
        try:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(
                    f"Conversation {conversation_id} not found",
                    {"conversation_id": conversation_id},
                )
            current = self._row_to_conversation(row)
            version = expected_version if expected_version is not None else current.row_version

            # updated_at never moves behind created_at
            now = max(_utcnow(), current.created_at).isoformat()
            cursor = conn.execute(
                """
                UPDATE conversations
                SET title = ?, provider = ?, model_name = ?, thread_id = ?, is_archived = ?,
                    updated_at = ?, row_version = row_version + 1
                WHERE id = ? AND row_version = ?
                """,
                (
                    title if title is not None else current.title,
                    (provider or current.provider).value,
                    model_name if model_name is not None else current.model_name,
                    thread_id if thread_id is not None else current.thread_id,
                    int(is_archived if is_archived is not None else current.is_archived),
                    now,
                    conversation_id,
                    version,
                ),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise ConflictError(
                    f"Conversation {conversation_id} was modified concurrently",
                    {
                        "conversation_id": conversation_id,
                        "expected_version": version,
                        "current_version": current.row_version,
                    },
                )
            conn.commit()
            updated = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            return self._row_to_conversation(updated)
        finally:
            conn.close()

    def archive_conversation(self, conversation_id: str) -> Conversation:
        return self.update_conversation(conversation_id, is_archived=True)

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation; messages and their artifacts cascade."""
        conn = self._db.connect()
        try:
            cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted conversation {conversation_id}")
            return deleted
        finally:
            conn.close()

    # =========================================================================
    # Messages
    # =========================================================================

    def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        *,
        message_id: Optional[str] = None,
        is_processing: bool = False,
        token_count: Optional[int] = None,
        file_operation: Optional[FileOperation] = None,
        action_card: Optional[ActionCardPayload] = None,
    ) -> Message:
        """Append a message (with optional artifacts) in one transaction.

        Appending does not bump the conversation row_version, so concurrent
        turns on the same conversation never lose messages.
        """
        message_id = message_id or str(uuid.uuid4())
        now = _utcnow()
        conn = self._db.connect()
        try:
            exists = conn.execute(
                "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if exists is None:
                raise NotFoundError(
                    f"Conversation {conversation_id} not found",
                    {"conversation_id": conversation_id},
                )
            conn.execute(
                """
                INSERT INTO messages (id, conversation_id, role, content, timestamp, token_count, is_processing)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    conversation_id,
                    role.value,
                    content,
                    now.isoformat(),
                    token_count,
                    int(is_processing),
                ),
            )
            if file_operation is not None:
                self._upsert_file_operation(conn, message_id, file_operation)
            if action_card is not None:
                self._upsert_action_card(conn, message_id, action_card)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        return Message(
            id=message_id,
            conversation_id=conversation_id,
            role=role,
            content=content,
            timestamp=now,
            token_count=token_count,
            is_processing=is_processing,
            file_operation=file_operation,
            action_card=action_card,
        )

    def get_message(self, message_id: str) -> Optional[Message]:
        conn = self._db.connect()
        try:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            if row is None:
                return None
            return self._hydrate_messages(conn, [row])[0]
        finally:
            conn.close()

    def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        """Return messages in chronological order; limit keeps the most recent ones."""
        conn = self._db.connect()
        try:
            return self._load_messages(conn, conversation_id, limit)
        finally:
            conn.close()

    def update_message_content(
        self,
        message_id: str,
        content: str,
        *,
        finalize: bool = False,
        token_count: Optional[int] = None,
    ) -> Message:
        """Replace the content of a message that is still streaming.

        Raises:
            NotFoundError: If the message does not exist.
            ConflictError: If the message has already been finalized.
        """
        conn = self._db.connect()
        try:
            row = conn.execute(
                "SELECT is_processing FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Message {message_id} not found", {"message_id": message_id})
            cursor = conn.execute(
                """
                UPDATE messages
                SET content = ?, token_count = COALESCE(?, token_count), is_processing = ?
                WHERE id = ? AND is_processing = 1
                """,
                (content, token_count, 0 if finalize else 1, message_id),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise ConflictError(
                    f"Message {message_id} is finalized and cannot be edited",
                    {"message_id": message_id},
                )
            conn.commit()
            updated = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            return self._hydrate_messages(conn, [updated])[0]
        finally:
            conn.close()

    def update_message_artifacts(
        self,
        message_id: str,
        action_card: Optional[ActionCardPayload] = None,
        file_operation: Optional[FileOperation] = None,
    ) -> Message:
        """Attach or replace the ActionCard and/or FileOperation of a message."""
        conn = self._db.connect()
        try:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Message {message_id} not found", {"message_id": message_id})
            if action_card is not None:
                self._upsert_action_card(conn, message_id, action_card)
            if file_operation is not None:
                self._upsert_file_operation(conn, message_id, file_operation)
            conn.commit()
            return self._hydrate_messages(conn, [row])[0]
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def update_action_card_status(
        self,
        reflection_key: str,
        status: ActionCardStatus,
        status_message: str = "",
    ) -> bool:
        """Record the outcome of a confirmation on the persisted card, if any."""
        completed_at = (
            _utcnow().isoformat()
            if status
            in (ActionCardStatus.COMPLETED, ActionCardStatus.FAILED, ActionCardStatus.CANCELLED)
            else None
        )
        conn = self._db.connect()
        try:
            cursor = conn.execute(
                """
                UPDATE action_cards
                SET status = ?, status_message = ?, completed_at = COALESCE(?, completed_at)
                WHERE reflection_key = ?
                """,
                (status.value, status_message, completed_at, reflection_key),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            provider=LlmProvider(row["provider"]),
            model_name=row["model_name"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            is_archived=bool(row["is_archived"]),
            thread_id=row["thread_id"],
            row_version=row["row_version"],
        )

    def _load_messages(
        self, conn: sqlite3.Connection, conversation_id: str, limit: Optional[int] = None
    ) -> List[Message]:
        if limit is None:
            rows = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY timestamp, rowid",
                (conversation_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                """
                SELECT * FROM (
                    SELECT *, rowid AS seq FROM messages WHERE conversation_id = ?
                    ORDER BY timestamp DESC, rowid DESC LIMIT ?
                ) ORDER BY timestamp, seq
                """,
                (conversation_id, limit),
            ).fetchall()
        return self._hydrate_messages(conn, rows)

    def _hydrate_messages(
        self, conn: sqlite3.Connection, rows: Iterable[sqlite3.Row]
    ) -> List[Message]:
        rows = list(rows)
        ids = [row["id"] for row in rows]
        file_ops = self._load_file_operations(conn, ids)
        cards = self._load_action_cards(conn, ids)
        return [
            Message(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=MessageRole(row["role"]),
                content=row["content"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                token_count=row["token_count"],
                is_processing=bool(row["is_processing"]),
                file_operation=file_ops.get(row["id"]),
                action_card=cards.get(row["id"]),
            )
            for row in rows
        ]

    @staticmethod
    def _placeholders(ids: List[str]) -> str:
        return ",".join("?" for _ in ids)

    def _load_file_operations(
        self, conn: sqlite3.Connection, message_ids: List[str]
    ) -> Dict[str, FileOperation]:
        if not message_ids:
            return {}
        rows = conn.execute(
            f"SELECT * FROM file_operations WHERE message_id IN ({self._placeholders(message_ids)})",
            message_ids,
        ).fetchall()
        return {
            row["message_id"]: FileOperation(
                action=FileOperationAction(row["action"]),
                file_path=row["file_path"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
            )
            for row in rows
        }

    def _load_action_cards(
        self, conn: sqlite3.Connection, message_ids: List[str]
    ) -> Dict[str, ActionCardPayload]:
        if not message_ids:
            return {}
        card_rows = conn.execute(
            f"SELECT * FROM action_cards WHERE message_id IN ({self._placeholders(message_ids)})",
            message_ids,
        ).fetchall()
        if not card_rows:
            return {}
        card_ids = [row["id"] for row in card_rows]
        planned: Dict[str, List[PlannedActionPayload]] = {card_id: [] for card_id in card_ids}
        for row in conn.execute(
            f"""
            SELECT * FROM planned_actions WHERE action_card_id IN ({self._placeholders(card_ids)})
            ORDER BY sort_order
            """,
            card_ids,
        ):
            planned[row["action_card_id"]].append(
                PlannedActionPayload(
                    id=row["id"],
                    type=ActionType(row["type"]),
                    source=row["source"],
                    destination=row["destination"],
                    description=row["description"],
                    operation=row["operation"],
                    content=row["content"],
                    sort_order=row["sort_order"],
                )
            )
        return {
            row["message_id"]: ActionCardPayload(
                id=row["id"],
                title=row["title"],
                status=ActionCardStatus(row["status"]),
                operation=row["operation"],
                status_message=row["status_message"],
                created_at=datetime.fromisoformat(row["created_at"]),
                completed_at=_parse_ts(row["completed_at"]),
                planned_actions=planned[row["id"]],
                reflection_metadata=ReflectionMetadata(
                    reasoning=row["reasoning"],
                    warnings=json.loads(row["warnings_json"] or "[]"),
                    needs_confirmation=bool(row["needs_confirmation"]),
                    reflection_key=row["reflection_key"] or "",
                ),
            )
            for row in card_rows
        }

    @staticmethod
    def _upsert_file_operation(
        conn: sqlite3.Connection, message_id: str, file_operation: FileOperation
    ) -> None:
        conn.execute(
            """
            INSERT INTO file_operations (message_id, action, file_path, timestamp)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(message_id) DO UPDATE SET
                action = excluded.action,
                file_path = excluded.file_path,
                timestamp = excluded.timestamp
            """,
            (
                message_id,
                file_operation.action.value,
                file_operation.file_path,
                file_operation.timestamp.isoformat(),
            ),
        )

    @staticmethod
    def _upsert_action_card(
        conn: sqlite3.Connection, message_id: str, card: ActionCardPayload
    ) -> None:
        # Replacing the card row cascades to its planned actions
        conn.execute(
            "DELETE FROM action_cards WHERE message_id = ? OR id = ?", (message_id, card.id)
        )
        metadata = card.reflection_metadata
        conn.execute(
            """
            INSERT INTO action_cards
            (id, message_id, title, status, operation, status_message, created_at, completed_at,
             reasoning, warnings_json, needs_confirmation, reflection_key)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                card.id,
                message_id,
                card.title,
                card.status.value,
                card.operation,
                card.status_message,
                card.created_at.isoformat(),
                card.completed_at.isoformat() if card.completed_at else None,
                metadata.reasoning,
                json.dumps(metadata.warnings),
                int(metadata.needs_confirmation),
                metadata.reflection_key or None,
            ),
        )
        conn.executemany(
            """
            INSERT INTO planned_actions
            (id, action_card_id, type, source, destination, description, operation, content, sort_order)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    action.id,
                    card.id,
                    action.type.value,
                    action.source,
                    action.destination,
                    action.description,
                    action.operation,
                    action.content,
                    action.sort_order,
                )
                for action in card.planned_actions
            ],
        )


__all__ = ["ConversationService", "MAX_PAGE_SIZE"]
