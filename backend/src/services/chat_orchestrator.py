"""Streaming Chat Orchestrator - drives one conversation turn.

A turn moves through tool discovery, model invocation and streaming, then
persistence. Events are produced in exactly the order the model emits them
(text deltas interleaved with tool-call markers and action cards), followed by
exactly one metadata event. Failures become a single trailing error event and
nothing from the assistant side is persisted. Cancellation propagates and also
leaves the assistant side unpersisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ..models.chat import ChatResponse, ChatStreamEvent, ChatStreamEventKind, HistoryItem, TurnMetadata
from ..models.conversation import Conversation, FileOperation, LlmProvider, MessageRole
from ..models.reflection import ActionCardPayload
from ..models.tools import ToolPendingConfirmation
from .conversation_service import ConversationService
from .errors import ConflictError, ExternalServiceError, InputValidationError
from .file_operations import extract_file_operation
from .function_middleware import (
    FunctionInvocationContext,
    FunctionMiddleware,
    build_pipeline,
    gateway_terminal,
    outcome_to_model_content,
)
from .llm_client import ChatModel, LlmClientError, TextDelta, ToolCallRequest
from .prompt_loader import ASSISTANT_SYSTEM_PROMPT, PromptLoader
from .tool_gateway import McpToolGateway

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"
TITLE_MAX_LENGTH = 80
TITLE_ELLIPSIS = "…"
MAX_TOOL_ROUNDS = 8
HISTORY_LIMIT = 20
TOUCH_ATTEMPTS = 3
MAX_MESSAGE_LENGTH = 32000


def create_title(text: str, now: Optional[datetime] = None) -> str:
    """Seed a conversation title from the first user message."""
    trimmed = (text or "").strip()
    if not trimmed:
        return f"Chat - {(now or datetime.now(timezone.utc)):%Y-%m-%d %H:%M}"
    if len(trimmed) <= TITLE_MAX_LENGTH:
        return trimmed
    return trimmed[:TITLE_MAX_LENGTH] + TITLE_ELLIPSIS


def _provider_of(model: ChatModel) -> LlmProvider:
    try:
        return LlmProvider(getattr(model, "provider", "unknown"))
    except ValueError:
        return LlmProvider.UNKNOWN


@dataclass
class ConversationPersistenceContext:
    """Where a turn is persisted and what history it starts from."""

    conversation_id: Optional[str] = None
    user_id: Optional[str] = None
    history: Optional[Sequence[HistoryItem]] = None


class ChatOrchestrator:
    """Runs chat turns against a model with gateway tools behind middleware."""

    def __init__(
        self,
        model: ChatModel,
        gateway: McpToolGateway,
        conversations: ConversationService,
        *,
        middlewares: Sequence[FunctionMiddleware] = (),
        prompt_loader: Optional[PromptLoader] = None,
        max_rounds: int = MAX_TOOL_ROUNDS,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self._model = model
        self._gateway = gateway
        self._conversations = conversations
        self._middlewares = list(middlewares)
        self._prompts = prompt_loader or PromptLoader()
        self._max_rounds = max_rounds
        self._history_limit = history_limit

    @staticmethod
    def validate_message(message: Optional[str]) -> str:
        """Reject empty or oversized messages before any side effect."""
        text = (message or "").strip()
        if not text:
            raise InputValidationError("Message is required", {"field": "message"})
        if len(text) > MAX_MESSAGE_LENGTH:
            raise InputValidationError(
                f"Message exceeds {MAX_MESSAGE_LENGTH} characters", {"field": "message"}
            )
        return text

    # =========================================================================
    # Turn execution
    # =========================================================================

    async def stream_turn(
        self,
        message: str,
        context: Optional[ConversationPersistenceContext] = None,
        instructions: Optional[str] = None,
    ) -> AsyncIterator[ChatStreamEvent]:
        """Execute one turn and yield its events.

        Each call is a fresh turn; the generator is not restartable.

        Raises:
            InputValidationError: If the message is empty (before anything is persisted).
        """
        text = self.validate_message(message)
        context = context or ConversationPersistenceContext()

        conversation = self._ensure_conversation(context, text)
        user_message = self._conversations.add_message(conversation.id, MessageRole.USER, text)
        logger.info(
            f"Turn started for conversation {conversation.id}",
            extra={"conversation_id": conversation.id, "user_message_id": user_message.id},
        )

        tools = await self._gateway.list_tools()
        openai_tools = [tool.to_openai_tool() for tool in tools]
        messages = self._build_messages(conversation.id, user_message.id, text, context, instructions)
        pipeline = build_pipeline(self._middlewares, gateway_terminal(self._gateway))

        accumulated: List[str] = []
        action_cards: List[ActionCardPayload] = []
        try:
            for round_index in range(self._max_rounds):
                round_text: List[str] = []
                tool_calls: List[ToolCallRequest] = []

                async for increment in self._model.stream(messages, openai_tools or None):
                    if isinstance(increment, TextDelta):
                        accumulated.append(increment.text)
                        round_text.append(increment.text)
                        yield ChatStreamEvent.text(increment.text)
                    else:
                        tool_calls.append(increment)
                        yield ChatStreamEvent.tool_call(increment.name)

                if not tool_calls:
                    break

                messages.append(
                    {
                        "role": "assistant",
                        "content": "".join(round_text) or None,
                        "tool_calls": [call.to_openai() for call in tool_calls],
                    }
                )
                for call in tool_calls:
                    outcome = await pipeline(
                        FunctionInvocationContext(
                            tool_name=call.name, arguments=call.arguments, call_id=call.call_id
                        )
                    )
                    if isinstance(outcome, ToolPendingConfirmation):
                        action_cards.append(outcome.action_card)
                        yield ChatStreamEvent.card(outcome.action_card)
                    messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": call.call_id,
                            "content": outcome_to_model_content(outcome),
                        }
                    )
            else:
                logger.warning(
                    f"Turn hit the {self._max_rounds}-round tool limit",
                    extra={"conversation_id": conversation.id},
                )

            metadata = self._persist_assistant(
                conversation.id, user_message.id, text, "".join(accumulated), action_cards
            )
        except LlmClientError as e:
            logger.error(f"Model failed mid-turn: {e.message}", extra={"conversation_id": conversation.id})
            yield ChatStreamEvent.error(e.message)
            return
        except Exception as e:
            logger.exception(f"Chat turn failed: {e}")
            yield ChatStreamEvent.error(f"Chat failed: {e}")
            return

        yield ChatStreamEvent.turn_metadata(metadata)

    async def complete_turn(
        self,
        message: str,
        context: Optional[ConversationPersistenceContext] = None,
        instructions: Optional[str] = None,
    ) -> ChatResponse:
        """Run a full turn and aggregate it into a single response.

        Raises:
            ExternalServiceError: If the turn ended with an error event.
        """
        parts: List[str] = []
        cards: List[ActionCardPayload] = []
        metadata: Optional[TurnMetadata] = None
        async for event in self.stream_turn(message, context, instructions):
            if event.kind == ChatStreamEventKind.TEXT:
                parts.append(event.content)
            elif event.kind == ChatStreamEventKind.ACTION_CARD and event.action_card:
                cards.append(event.action_card)
            elif event.kind == ChatStreamEventKind.METADATA:
                metadata = event.metadata
            elif event.kind == ChatStreamEventKind.ERROR:
                raise ExternalServiceError(event.content)

        if metadata is None:
            raise ExternalServiceError("Chat turn ended without a result")
        return ChatResponse(
            conversation_id=metadata.conversation_id,
            user_message_id=metadata.user_message_id,
            assistant_message_id=metadata.assistant_message_id,
            text="".join(parts),
            file_operation_result=metadata.file_operation,
            action_cards=cards,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_conversation(
        self, context: ConversationPersistenceContext, text: str
    ) -> Conversation:
        if context.conversation_id:
            existing = self._conversations.get_conversation(context.conversation_id)
            if existing is not None:
                return existing
        try:
            return self._conversations.create_conversation(
                title=create_title(text),
                user_id=context.user_id,
                conversation_id=context.conversation_id,
                provider=_provider_of(self._model),
                model_name=getattr(self._model, "model", None),
            )
        except ConflictError:
            # A concurrent turn created the same id first
            existing = self._conversations.get_conversation(context.conversation_id or "")
            if existing is None:
                raise
            return existing

    def _build_messages(
        self,
        conversation_id: str,
        user_message_id: str,
        text: str,
        context: ConversationPersistenceContext,
        instructions: Optional[str],
    ) -> List[Dict[str, Any]]:
        system_prompt = instructions or self._prompts.load(ASSISTANT_SYSTEM_PROMPT)
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]

        if context.history is not None:
            history = [(item.role, item.content) for item in context.history]
        else:
            stored = self._conversations.list_messages(
                conversation_id, limit=self._history_limit + 1
            )
            history = [(m.role, m.content) for m in stored if m.id != user_message_id]
        for role, content in history[-self._history_limit:]:
            if content:
                messages.append({"role": role.value, "content": content})

        messages.append({"role": "user", "content": text})
        return messages

    def _persist_assistant(
        self,
        conversation_id: str,
        user_message_id: str,
        user_text: str,
        assistant_text: str,
        action_cards: List[ActionCardPayload],
    ) -> TurnMetadata:
        file_operation: Optional[FileOperation] = extract_file_operation(assistant_text)
        action_card = action_cards[0] if action_cards else None
        if len(action_cards) > 1:
            logger.info(
                f"{len(action_cards)} action cards produced; persisting the first",
                extra={"conversation_id": conversation_id},
            )

        # Touch first: an unresolved conflict must not leave an assistant reply behind
        self._touch_conversation(conversation_id, user_text)
        assistant_message = self._conversations.add_message(
            conversation_id,
            MessageRole.ASSISTANT,
            assistant_text,
            file_operation=file_operation,
            action_card=action_card,
        )

        return TurnMetadata(
            conversation_id=conversation_id,
            user_message_id=user_message_id,
            assistant_message_id=assistant_message.id,
            file_operation=file_operation,
            action_card=action_card,
        )

    def _touch_conversation(self, conversation_id: str, user_text: str) -> Conversation:
        """Bump updated_at (and replace a placeholder title), retrying on conflicts."""
        for attempt in range(1, TOUCH_ATTEMPTS + 1):
            current = self._conversations.get_conversation(conversation_id)
            if current is None:
                raise ConflictError(
                    f"Conversation {conversation_id} was deleted during the turn",
                    {"conversation_id": conversation_id},
                )
            title = create_title(user_text) if current.title == DEFAULT_TITLE else None
            try:
                return self._conversations.update_conversation(
                    conversation_id,
                    expected_version=current.row_version,
                    title=title,
                    provider=_provider_of(self._model),
                    model_name=getattr(self._model, "model", None),
                )
            except ConflictError as e:
                logger.warning(
                    f"Version conflict updating conversation {conversation_id} "
                    f"(attempt {attempt}): {e.message}",
                    extra={"conversation_id": conversation_id},
                )
        raise ConflictError(
            f"Conversation {conversation_id} was modified concurrently",
            {"conversation_id": conversation_id, "attempts": TOUCH_ATTEMPTS},
        )


__all__ = [
    "ChatOrchestrator",
    "ConversationPersistenceContext",
    "create_title",
    "DEFAULT_TITLE",
    "TITLE_MAX_LENGTH",
    "MAX_TOOL_ROUNDS",
]
