"""Pydantic models for chat requests, responses and stream events."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import Field

from .conversation import FileOperation, MessageRole
from .reflection import ActionCardPayload, CamelModel


class HistoryItem(CamelModel):
    """Prior turn supplied by the client instead of stored history."""

    role: MessageRole
    content: str


class ChatRequest(CamelModel):
    """Request body for /chat and /chat/stream."""

    message: str = Field(..., max_length=32000, description="User message")
    history: Optional[List[HistoryItem]] = Field(
        None, description="Explicit history; stored messages are used when omitted"
    )
    conversation_id: Optional[str] = Field(None, description="Existing or desired conversation id")
    user_id: Optional[str] = None


class ChatResponse(CamelModel):
    """Non-streaming full-turn result."""

    conversation_id: str
    user_message_id: str
    assistant_message_id: str
    text: str
    file_operation_result: Optional[FileOperation] = None
    action_cards: List[ActionCardPayload] = Field(default_factory=list)


class ChatStreamEventKind(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    ACTION_CARD = "action_card"
    METADATA = "metadata"
    ERROR = "error"


class TurnMetadata(CamelModel):
    """Identifiers of what a turn persisted."""

    conversation_id: str
    user_message_id: str
    assistant_message_id: str
    file_operation: Optional[FileOperation] = None
    action_card: Optional[ActionCardPayload] = None


class ChatStreamEvent(CamelModel):
    """One normalized event produced by the orchestrator."""

    kind: ChatStreamEventKind
    content: str = ""
    action_card: Optional[ActionCardPayload] = None
    metadata: Optional[TurnMetadata] = None

    @classmethod
    def text(cls, delta: str) -> "ChatStreamEvent":
        return cls(kind=ChatStreamEventKind.TEXT, content=delta)

    @classmethod
    def tool_call(cls, name: str) -> "ChatStreamEvent":
        return cls(kind=ChatStreamEventKind.TOOL_CALL, content=name)

    @classmethod
    def card(cls, action_card: ActionCardPayload) -> "ChatStreamEvent":
        return cls(kind=ChatStreamEventKind.ACTION_CARD, action_card=action_card)

    @classmethod
    def turn_metadata(cls, metadata: TurnMetadata) -> "ChatStreamEvent":
        return cls(kind=ChatStreamEventKind.METADATA, metadata=metadata)

    @classmethod
    def error(cls, message: str) -> "ChatStreamEvent":
        return cls(kind=ChatStreamEventKind.ERROR, content=message)

    def payload(self) -> str:
        """Wire payload: raw text for text/tool/error events, JSON otherwise."""
        if self.kind == ChatStreamEventKind.ACTION_CARD and self.action_card is not None:
            return self.action_card.to_wire()
        if self.kind == ChatStreamEventKind.METADATA and self.metadata is not None:
            return self.metadata.model_dump_json(by_alias=True)
        return self.content


__all__ = [
    "HistoryItem",
    "ChatRequest",
    "ChatResponse",
    "ChatStreamEventKind",
    "TurnMetadata",
    "ChatStreamEvent",
]
