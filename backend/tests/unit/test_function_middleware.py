"""Unit tests for the tool-call middleware pipeline."""

from __future__ import annotations

import json
from typing import List

import pytest

from backend.src.models.reflection import ActionCardStatus, ActionType
from backend.src.models.tools import (
    ToolCompleted,
    ToolPendingConfirmation,
    ToolRejected,
    ToolResult,
)
from backend.src.services.function_middleware import (
    FAIL_CLOSED_REASON,
    FunctionInvocationContext,
    ReflectionMiddleware,
    ToolCallLoggingMiddleware,
    build_pipeline,
    gateway_terminal,
    outcome_to_model_content,
)
from backend.src.services.llm_client import LlmClientError
from backend.src.services.pending_confirmations import PendingConfirmationStore
from backend.src.services.reflection import ReflectionService
from backend.tests.fakes import FakeToolGateway, ScriptedChatModel


def verdict(**fields) -> str:
    body = {"shouldReject": False, "needsUserConfirmation": False, "reason": "ok"}
    body.update(fields)
    return json.dumps(body)


def reflection_middleware(inline_prompts, replies, store=None, **kwargs):
    model = ScriptedChatModel(replies=replies)
    store = store if store is not None else PendingConfirmationStore()
    middleware = ReflectionMiddleware(
        ReflectionService(model, inline_prompts),
        store,
        key_factory=lambda: "reflection_test",
        **kwargs,
    )
    return middleware, model, store


class TestBuildPipeline:
    """Tests for middleware composition."""

    @pytest.mark.asyncio
    async def test_first_middleware_is_outermost(self) -> None:
        order: List[str] = []

        def tracer(name):
            async def middleware(context, call_next):
                order.append(f"{name}:before")
                outcome = await call_next(context)
                order.append(f"{name}:after")
                return outcome

            return middleware

        gateway = FakeToolGateway()
        pipeline = build_pipeline([tracer("a"), tracer("b")], gateway_terminal(gateway))

        outcome = await pipeline(FunctionInvocationContext("obsidian_get_file_contents", {"filepath": "a.md"}))

        assert order == ["a:before", "b:before", "b:after", "a:after"]
        assert isinstance(outcome, ToolCompleted)
        assert outcome.result.text == "obsidian_get_file_contents done"
        assert gateway.calls == [("obsidian_get_file_contents", {"filepath": "a.md"})]

    @pytest.mark.asyncio
    async def test_short_circuit_skips_rest_of_chain(self) -> None:
        async def blocker(context, call_next):
            return ToolRejected(reason="blocked")

        async def never(context, call_next):
            raise AssertionError("should not run")

        gateway = FakeToolGateway()
        pipeline = build_pipeline([blocker, never], gateway_terminal(gateway))

        outcome = await pipeline(FunctionInvocationContext("anything"))

        assert outcome == ToolRejected(reason="blocked")
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_logging_middleware_passes_outcome_through(self) -> None:
        gateway = FakeToolGateway(results={"t": ToolResult(is_error=True, text="boom")})
        pipeline = build_pipeline([ToolCallLoggingMiddleware()], gateway_terminal(gateway))

        outcome = await pipeline(FunctionInvocationContext("t"))

        assert outcome.result == ToolResult(is_error=True, text="boom")


class TestReflectionMiddleware:
    """Tests for the confirmation gate."""

    @pytest.mark.asyncio
    async def test_non_destructive_tool_skips_reflection(self, inline_prompts) -> None:
        middleware, model, store = reflection_middleware(inline_prompts, replies=[])
        gateway = FakeToolGateway()
        pipeline = build_pipeline([middleware], gateway_terminal(gateway))

        outcome = await pipeline(FunctionInvocationContext("obsidian_append_content", {"filepath": "a.md"}))

        assert isinstance(outcome, ToolCompleted)
        assert model.complete_calls == []
        assert len(gateway.calls) == 1

    @pytest.mark.asyncio
    async def test_delete_pauses_even_when_model_says_no_confirmation(self, inline_prompts) -> None:
        middleware, _, store = reflection_middleware(
            inline_prompts, replies=[verdict(actionDescription="Delete notes/x.md")]
        )
        gateway = FakeToolGateway()
        pipeline = build_pipeline([middleware], gateway_terminal(gateway))

        outcome = await pipeline(
            FunctionInvocationContext("obsidian_delete_file", {"filepath": "notes/x.md"})
        )

        assert isinstance(outcome, ToolPendingConfirmation)
        assert outcome.reflection_key == "reflection_test"
        assert outcome.verdict.needs_user_confirmation is True
        assert gateway.calls == []

        card = outcome.action_card
        assert card.title == "Delete Operation"
        assert card.status == ActionCardStatus.PENDING
        assert card.operation == "delete"
        assert card.reflection_metadata.reflection_key == "reflection_test"
        [planned] = card.planned_actions
        assert planned.type == ActionType.DELETE
        assert planned.source == "notes/x.md"
        assert planned.description == "Delete notes/x.md"

        stored = store.get("reflection_test")
        assert stored.tool_name == "obsidian_delete_file"
        assert stored.arguments == {"filepath": "notes/x.md"}
        assert stored.action_card == card

    @pytest.mark.asyncio
    async def test_move_card_records_destination(self, inline_prompts) -> None:
        middleware, _, _ = reflection_middleware(inline_prompts, replies=[verdict()])
        pipeline = build_pipeline([middleware], gateway_terminal(FakeToolGateway()))

        outcome = await pipeline(
            FunctionInvocationContext(
                "obsidian_move_file", {"filepath": "a.md", "destination": "archive/a.md"}
            )
        )

        [planned] = outcome.action_card.planned_actions
        assert planned.type == ActionType.MOVE
        assert planned.source == "a.md"
        assert planned.destination == "archive/a.md"

    @pytest.mark.asyncio
    async def test_rejection_short_circuits(self, inline_prompts) -> None:
        middleware, _, store = reflection_middleware(
            inline_prompts, replies=[verdict(shouldReject=True, reason="Bulk delete")]
        )
        gateway = FakeToolGateway()
        pipeline = build_pipeline([middleware], gateway_terminal(gateway))

        outcome = await pipeline(FunctionInvocationContext("obsidian_delete_file", {"filepath": "*"}))

        assert outcome == ToolRejected(reason="Bulk delete")
        assert gateway.calls == []
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_reflection_failure_fails_open_by_default(self, inline_prompts) -> None:
        middleware, _, store = reflection_middleware(
            inline_prompts, replies=[LlmClientError("API error: 500")]
        )
        gateway = FakeToolGateway()
        pipeline = build_pipeline([middleware], gateway_terminal(gateway))

        outcome = await pipeline(FunctionInvocationContext("obsidian_delete_file", {"filepath": "a.md"}))

        assert isinstance(outcome, ToolCompleted)
        assert gateway.calls == [("obsidian_delete_file", {"filepath": "a.md"})]
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_reflection_failure_pauses_when_fail_closed(self, inline_prompts) -> None:
        middleware, _, store = reflection_middleware(
            inline_prompts, replies=["not json"], fail_closed=True
        )
        gateway = FakeToolGateway()
        pipeline = build_pipeline([middleware], gateway_terminal(gateway))

        outcome = await pipeline(FunctionInvocationContext("obsidian_delete_file", {"filepath": "a.md"}))

        assert isinstance(outcome, ToolPendingConfirmation)
        assert outcome.verdict.reason == FAIL_CLOSED_REASON
        assert gateway.calls == []
        assert "reflection_test" in store


class TestOutcomeToModelContent:
    def test_rejected(self) -> None:
        assert outcome_to_model_content(ToolRejected(reason="nope")) == "REJECTED: nope"

    def test_completed_and_error(self) -> None:
        assert outcome_to_model_content(ToolCompleted(result=ToolResult(text="ok"))) == "ok"
        assert (
            outcome_to_model_content(ToolCompleted(result=ToolResult(is_error=True, text="gone")))
            == "Error: gone"
        )
