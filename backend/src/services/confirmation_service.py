"""Resume or discard tool calls paused for user confirmation."""

from __future__ import annotations

import logging

from ..models.reflection import ActionCardStatus
from ..models.vault import ActionCardDecisionResponse
from .conversation_service import ConversationService
from .errors import NotFoundError
from .pending_confirmations import PendingConfirmationStore
from .tool_gateway import McpToolGateway

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Action card not found or already executed"


class ConfirmationService:
    """Confirm or cancel a pending operation by its reflection key."""

    def __init__(
        self,
        store: PendingConfirmationStore,
        gateway: McpToolGateway,
        conversations: ConversationService,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._conversations = conversations

    async def confirm(self, reflection_key: str) -> ActionCardDecisionResponse:
        """Execute the stored tool call exactly as the model requested it.

        The entry is consumed before execution, so a key can run at most once.

        Raises:
            NotFoundError: If the key is unknown, expired or already consumed.
        """
        pending = self._store.pop(reflection_key)
        if pending is None:
            raise NotFoundError(NOT_FOUND_MESSAGE, {"reflection_key": reflection_key})

        self._conversations.update_action_card_status(reflection_key, ActionCardStatus.PROCESSING)
        result = await self._gateway.invoke_tool(pending.tool_name, pending.arguments)
        status = ActionCardStatus.FAILED if result.is_error else ActionCardStatus.COMPLETED
        self._conversations.update_action_card_status(reflection_key, status, result.text)

        logger.info(
            f"Confirmed {pending.tool_name}: {status.value}",
            extra={"reflection_key": reflection_key, "tool": pending.tool_name},
        )
        return ActionCardDecisionResponse(
            success=not result.is_error,
            message=result.text,
            function_name=pending.tool_name,
        )

    def cancel(self, reflection_key: str) -> ActionCardDecisionResponse:
        """Discard a pending operation.

        Raises:
            NotFoundError: If the key is unknown, expired or already consumed.
        """
        pending = self._store.pop(reflection_key)
        if pending is None:
            raise NotFoundError(NOT_FOUND_MESSAGE, {"reflection_key": reflection_key})

        message = f"Operation '{pending.tool_name}' cancelled successfully"
        self._conversations.update_action_card_status(
            reflection_key, ActionCardStatus.CANCELLED, message
        )
        logger.info(message, extra={"reflection_key": reflection_key})
        return ActionCardDecisionResponse(
            success=True, message=message, function_name=pending.tool_name
        )


__all__ = ["ConfirmationService", "NOT_FOUND_MESSAGE"]
