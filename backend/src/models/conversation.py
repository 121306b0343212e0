"""Pydantic models for persisted conversations and messages."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from .reflection import ActionCardPayload, CamelModel


class LlmProvider(str, Enum):
    UNKNOWN = "unknown"
    LMSTUDIO = "lmstudio"
    OPENROUTER = "openrouter"
    NANOGPT = "nanogpt"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class FileOperationAction(str, Enum):
    CREATED = "Created"
    MODIFIED = "Modified"
    APPENDED = "Appended"
    DELETED = "Deleted"
    MOVED = "Moved"


class FileOperation(CamelModel):
    """File change inferred from an assistant reply."""

    action: FileOperationAction
    file_path: str = Field(..., min_length=1)
    timestamp: datetime


class Message(CamelModel):
    """A single turn entry in a conversation."""

    id: str
    conversation_id: str
    role: MessageRole
    content: str = ""
    timestamp: datetime
    token_count: Optional[int] = Field(None, ge=0)
    is_processing: bool = False
    file_operation: Optional[FileOperation] = None
    action_card: Optional[ActionCardPayload] = None


class Conversation(CamelModel):
    """Conversation with optional message history."""

    id: str
    user_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=256)
    provider: LlmProvider = LlmProvider.UNKNOWN
    model_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    is_archived: bool = False
    thread_id: Optional[str] = Field(
        None, description="Model-side correlation id used to resume provider state"
    )
    row_version: int = Field(1, ge=1, description="Optimistic concurrency token")
    messages: Optional[List[Message]] = None


class ConversationSummary(CamelModel):
    """Lightweight row for conversation listings."""

    id: str
    title: str
    provider: LlmProvider = LlmProvider.UNKNOWN
    model_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    is_archived: bool = False
    message_count: int = 0


class ConversationListResponse(CamelModel):
    conversations: List[ConversationSummary]
    skip: int
    take: int


class ConversationCreateRequest(CamelModel):
    title: Optional[str] = Field(None, max_length=256)
    user_id: Optional[str] = None


class ConversationCreateResponse(CamelModel):
    id: str


class ConversationUpdateRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=256)
    row_version: Optional[int] = Field(
        None, ge=1, description="Expected version; omit to update the latest row"
    )


class MessageArtifactsUpdate(CamelModel):
    """Replace the ActionCard and/or FileOperation attached to a message."""

    action_card: Optional[ActionCardPayload] = None
    file_operation: Optional[FileOperation] = None


__all__ = [
    "LlmProvider",
    "MessageRole",
    "FileOperationAction",
    "FileOperation",
    "Message",
    "Conversation",
    "ConversationSummary",
    "ConversationListResponse",
    "ConversationCreateRequest",
    "ConversationCreateResponse",
    "ConversationUpdateRequest",
    "MessageArtifactsUpdate",
]
