"""Pydantic models for data validation and serialization."""

from .chat import ChatRequest, ChatResponse, ChatStreamEvent, ChatStreamEventKind, HistoryItem, TurnMetadata
from .conversation import (
    Conversation,
    ConversationSummary,
    FileOperation,
    FileOperationAction,
    LlmProvider,
    Message,
    MessageRole,
)
from .reflection import (
    ActionCardPayload,
    ActionCardStatus,
    ActionType,
    PlannedActionPayload,
    ReflectionMetadata,
    ReflectionVerdict,
)
from .tools import (
    ToolArguments,
    ToolCompleted,
    ToolDefinition,
    ToolOutcome,
    ToolPendingConfirmation,
    ToolRejected,
    ToolResult,
)
from .vault import ActionCardDecisionResponse, VaultModifyRequest, VaultModifyResponse

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "ChatStreamEvent",
    "ChatStreamEventKind",
    "HistoryItem",
    "TurnMetadata",
    "Conversation",
    "ConversationSummary",
    "FileOperation",
    "FileOperationAction",
    "LlmProvider",
    "Message",
    "MessageRole",
    "ActionCardPayload",
    "ActionCardStatus",
    "ActionType",
    "PlannedActionPayload",
    "ReflectionMetadata",
    "ReflectionVerdict",
    "ToolArguments",
    "ToolCompleted",
    "ToolDefinition",
    "ToolOutcome",
    "ToolPendingConfirmation",
    "ToolRejected",
    "ToolResult",
    "ActionCardDecisionResponse",
    "VaultModifyRequest",
    "VaultModifyResponse",
]
