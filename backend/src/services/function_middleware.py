"""Middleware pipeline wrapped around every tool the model may call.

Each middleware is an async callable ``(context, call_next) -> ToolOutcome``.
It either returns ``await call_next(context)`` (optionally transformed) or
short-circuits with its own outcome (``ToolRejected`` or
``ToolPendingConfirmation``), in which case the remaining middleware and the
real tool never run.
"""

from __future__ import annotations

import functools
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Iterable, Optional

from ..models.reflection import ReflectionVerdict
from ..models.tools import (
    ToolArguments,
    ToolCompleted,
    ToolOutcome,
    ToolPendingConfirmation,
    ToolRejected,
)
from .action_cards import build_action_card
from .pending_confirmations import PendingConfirmation, PendingConfirmationStore
from .reflection import ALWAYS_CONFIRM_TOOLS, ReflectionService, enforce_confirmation_policy
from .tool_gateway import McpToolGateway

logger = logging.getLogger(__name__)

FAIL_CLOSED_REASON = "Safety check unavailable; confirmation required"


@dataclass(frozen=True)
class FunctionInvocationContext:
    tool_name: str
    arguments: ToolArguments = field(default_factory=dict)
    call_id: str = ""


NextHandler = Callable[[FunctionInvocationContext], Awaitable[ToolOutcome]]
FunctionMiddleware = Callable[[FunctionInvocationContext, NextHandler], Awaitable[ToolOutcome]]


def build_pipeline(
    middlewares: Iterable[FunctionMiddleware], terminal: NextHandler
) -> NextHandler:
    """Fold middleware right-to-left so the first one is outermost."""
    handler = terminal
    for middleware in reversed(list(middlewares)):
        handler = functools.partial(middleware, call_next=handler)
    return handler


def gateway_terminal(gateway: McpToolGateway) -> NextHandler:
    """The real invocation at the end of every pipeline."""

    async def invoke(context: FunctionInvocationContext) -> ToolOutcome:
        result = await gateway.invoke_tool(context.tool_name, context.arguments)
        return ToolCompleted(result=result)

    return invoke


def new_reflection_key() -> str:
    return f"reflection_{uuid.uuid4()}"


class ReflectionMiddleware:
    """Gate destructive tools behind a reflection verdict.

    Non-destructive tools pass straight through without a reflection call.
    If reflection itself fails the call proceeds (fail-open) unless
    ``fail_closed`` is set, in which case it waits for confirmation.
    """

    def __init__(
        self,
        reflection: ReflectionService,
        store: PendingConfirmationStore,
        *,
        destructive_tools: FrozenSet[str] = ALWAYS_CONFIRM_TOOLS,
        fail_closed: bool = False,
        key_factory: Callable[[], str] = new_reflection_key,
    ) -> None:
        self._reflection = reflection
        self._store = store
        self.destructive_tools = destructive_tools
        self.fail_closed = fail_closed
        self._key_factory = key_factory

    async def __call__(
        self, context: FunctionInvocationContext, call_next: NextHandler
    ) -> ToolOutcome:
        if context.tool_name not in self.destructive_tools:
            return await call_next(context)

        try:
            outcome = await self._gate(context)
        except Exception as e:
            logger.warning(
                f"Reflection failed for {context.tool_name}: {e}",
                extra={"tool": context.tool_name, "fail_closed": self.fail_closed},
            )
            if not self.fail_closed:
                return await call_next(context)
            outcome = self._pause(
                context,
                ReflectionVerdict(
                    needs_user_confirmation=True,
                    reason=FAIL_CLOSED_REASON,
                    warnings=["The automatic safety check could not run"],
                ),
            )

        if outcome is None:
            return await call_next(context)
        return outcome

    async def _gate(self, context: FunctionInvocationContext) -> Optional[ToolOutcome]:
        verdict = await self._reflection.reflect(context.tool_name, context.arguments)
        verdict = enforce_confirmation_policy(context.tool_name, verdict, self.destructive_tools)

        if verdict.should_reject:
            logger.info(f"Rejected {context.tool_name}: {verdict.reason}", extra={"tool": context.tool_name})
            return ToolRejected(reason=verdict.reason)
        if verdict.needs_user_confirmation:
            return self._pause(context, verdict)
        return None

    def _pause(
        self, context: FunctionInvocationContext, verdict: ReflectionVerdict
    ) -> ToolPendingConfirmation:
        key = self._key_factory()
        card = build_action_card(context.tool_name, context.arguments, verdict, key)
        self._store.set(
            key,
            PendingConfirmation(
                tool_name=context.tool_name,
                arguments=dict(context.arguments),
                verdict=verdict,
                action_card=card,
            ),
        )
        logger.info(
            f"Paused {context.tool_name} pending confirmation",
            extra={"tool": context.tool_name, "reflection_key": key},
        )
        return ToolPendingConfirmation(reflection_key=key, verdict=verdict, action_card=card)


class ToolCallLoggingMiddleware:
    """Log each tool call with its outcome and duration."""

    async def __call__(
        self, context: FunctionInvocationContext, call_next: NextHandler
    ) -> ToolOutcome:
        started = time.perf_counter()
        outcome = await call_next(context)
        elapsed_ms = (time.perf_counter() - started) * 1000
        is_error = isinstance(outcome, ToolCompleted) and outcome.result.is_error
        logger.info(
            f"Tool {context.tool_name} -> {outcome.kind} in {elapsed_ms:.0f}ms",
            extra={"tool": context.tool_name, "outcome": outcome.kind, "is_error": is_error},
        )
        return outcome


def outcome_to_model_content(outcome: ToolOutcome) -> str:
    """Render an outcome as the tool message the model sees next."""
    if isinstance(outcome, ToolRejected):
        return f"REJECTED: {outcome.reason}"
    if isinstance(outcome, ToolPendingConfirmation):
        return json.dumps(
            {
                "status": "PENDING_CONFIRMATION",
                "reflectionKey": outcome.reflection_key,
                "description": outcome.verdict.action_description or outcome.verdict.reason,
                "warnings": outcome.verdict.warnings,
                "message": "The user must confirm this operation in the UI before it runs.",
            }
        )
    if outcome.result.is_error:
        return f"Error: {outcome.result.text}"
    return outcome.result.text


__all__ = [
    "FunctionInvocationContext",
    "FunctionMiddleware",
    "NextHandler",
    "build_pipeline",
    "gateway_terminal",
    "new_reflection_key",
    "ReflectionMiddleware",
    "ToolCallLoggingMiddleware",
    "outcome_to_model_content",
    "FAIL_CLOSED_REASON",
]
