"""Unit tests for the streaming chat orchestrator."""

from __future__ import annotations

import asyncio
import json
from typing import List

import pytest

from backend.src.models.chat import ChatStreamEvent, ChatStreamEventKind, HistoryItem
from backend.src.models.conversation import FileOperationAction, MessageRole
from backend.src.models.tools import ToolResult
from backend.src.services.chat_orchestrator import (
    DEFAULT_TITLE,
    ChatOrchestrator,
    ConversationPersistenceContext,
    create_title,
)
from backend.src.services.errors import ConflictError, InputValidationError
from backend.src.services.function_middleware import ReflectionMiddleware
from backend.src.services.llm_client import LlmClientError, TextDelta, ToolCallRequest
from backend.src.services.pending_confirmations import PendingConfirmationStore
from backend.src.services.reflection import ReflectionService
from backend.tests.fakes import FakeToolGateway, ScriptedChatModel


def _orchestrator(model, gateway, conversation_service, inline_prompts, middlewares=()):
    return ChatOrchestrator(
        model,
        gateway,
        conversation_service,
        middlewares=middlewares,
        prompt_loader=inline_prompts,
    )


async def _collect(stream) -> List[ChatStreamEvent]:
    return [event async for event in stream]


class TestCreateTitle:
    """Tests for conversation title seeding."""

    def test_long_message_is_truncated_with_ellipsis(self) -> None:
        title = create_title("a" * 100)

        assert len(title) == 81
        assert title == "a" * 80 + "…"

    def test_short_message_is_kept(self) -> None:
        assert create_title("  plan my week  ") == "plan my week"

    def test_exactly_eighty_characters_is_not_truncated(self) -> None:
        assert create_title("b" * 80) == "b" * 80

    def test_empty_message_gets_dated_title(self) -> None:
        assert create_title("   ").startswith("Chat - ")


class TestStreamTurn:
    """Tests for event ordering and persistence of a turn."""

    @pytest.mark.asyncio
    async def test_events_follow_model_order_then_single_metadata(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(
            rounds=[
                [
                    TextDelta("Hello "),
                    TextDelta("world"),
                    ToolCallRequest("call_1", "obsidian_delete_file", {"filepath": "a.md"}),
                ],
                [TextDelta(" done")],
            ]
        )
        gateway = FakeToolGateway(tools=["obsidian_delete_file"])
        orchestrator = _orchestrator(model, gateway, conversation_service, inline_prompts)

        events = await _collect(orchestrator.stream_turn("delete a"))

        assert [(e.kind, e.content) for e in events[:-1]] == [
            (ChatStreamEventKind.TEXT, "Hello "),
            (ChatStreamEventKind.TEXT, "world"),
            (ChatStreamEventKind.TOOL_CALL, "obsidian_delete_file"),
            (ChatStreamEventKind.TEXT, " done"),
        ]
        assert events[-1].kind == ChatStreamEventKind.METADATA
        assert sum(e.kind == ChatStreamEventKind.METADATA for e in events) == 1

    @pytest.mark.asyncio
    async def test_persists_user_and_accumulated_assistant_text(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("I created the file "), TextDelta("'notes/today.md'")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        events = await _collect(orchestrator.stream_turn("make a note for today"))
        metadata = events[-1].metadata

        conversation = conversation_service.get_conversation(
            metadata.conversation_id, include_messages=True
        )
        assert [m.role for m in conversation.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert conversation.messages[0].id == metadata.user_message_id
        assistant = conversation.messages[1]
        assert assistant.id == metadata.assistant_message_id
        assert assistant.content == "I created the file 'notes/today.md'"
        assert assistant.file_operation.action == FileOperationAction.CREATED
        assert assistant.file_operation.file_path == "notes/today.md"
        assert metadata.file_operation.file_path == "notes/today.md"

    @pytest.mark.asyncio
    async def test_new_conversation_title_is_seeded_from_message(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        events = await _collect(orchestrator.stream_turn("a" * 100))

        conversation = conversation_service.get_conversation(events[-1].metadata.conversation_id)
        assert len(conversation.title) == 81

    @pytest.mark.asyncio
    async def test_supplied_unknown_id_creates_conversation_with_that_id(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        events = await _collect(
            orchestrator.stream_turn("hi", ConversationPersistenceContext(conversation_id="conv-1"))
        )

        assert events[-1].metadata.conversation_id == "conv-1"
        assert conversation_service.get_conversation("conv-1") is not None

    @pytest.mark.asyncio
    async def test_placeholder_title_is_replaced_at_end_of_turn(
        self, conversation_service, inline_prompts
    ) -> None:
        existing = conversation_service.create_conversation(title=DEFAULT_TITLE)
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        await _collect(
            orchestrator.stream_turn(
                "summarize my reading list", ConversationPersistenceContext(conversation_id=existing.id)
            )
        )

        updated = conversation_service.get_conversation(existing.id)
        assert updated.title == "summarize my reading list"
        assert updated.row_version == existing.row_version + 1
        assert updated.updated_at >= updated.created_at

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected_before_persistence(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel()
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        with pytest.raises(InputValidationError):
            await _collect(orchestrator.stream_turn("   "))

        assert conversation_service.list_conversations() == []
        assert model.stream_calls == []

    @pytest.mark.asyncio
    async def test_tool_manifest_is_passed_to_model(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        gateway = FakeToolGateway(tools=["obsidian_list_files_in_vault"])
        orchestrator = _orchestrator(model, gateway, conversation_service, inline_prompts)

        await _collect(orchestrator.stream_turn("list files"))

        tools = model.stream_calls[0]["tools"]
        assert [t["function"]["name"] for t in tools] == ["obsidian_list_files_in_vault"]

    @pytest.mark.asyncio
    async def test_no_tools_passes_none_to_model(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        await _collect(orchestrator.stream_turn("list files"))

        assert model.stream_calls[0]["tools"] is None

    @pytest.mark.asyncio
    async def test_tool_results_are_fed_back_to_the_model(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(
            rounds=[
                [ToolCallRequest("call_1", "obsidian_list_files_in_vault", {})],
                [TextDelta("You have one file.")],
            ]
        )
        gateway = FakeToolGateway(
            tools=["obsidian_list_files_in_vault"],
            results={"obsidian_list_files_in_vault": ToolResult(text='["a.md"]')},
        )
        orchestrator = _orchestrator(model, gateway, conversation_service, inline_prompts)

        await _collect(orchestrator.stream_turn("list files"))

        second_round = model.stream_calls[1]["messages"]
        assert second_round[-2]["tool_calls"][0]["function"]["name"] == "obsidian_list_files_in_vault"
        assert second_round[-1] == {"role": "tool", "tool_call_id": "call_1", "content": '["a.md"]'}
        assert gateway.calls == [("obsidian_list_files_in_vault", {})]


class TestHistory:
    """Tests for history resolution."""

    @pytest.mark.asyncio
    async def test_stored_history_is_used_when_none_supplied(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("first answer")], [TextDelta("second answer")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        first = await _collect(orchestrator.stream_turn("first question"))
        conversation_id = first[-1].metadata.conversation_id
        await _collect(
            orchestrator.stream_turn(
                "second question", ConversationPersistenceContext(conversation_id=conversation_id)
            )
        )

        messages = model.stream_calls[1]["messages"]
        assert messages[0]["role"] == "system"
        assert [(m["role"], m["content"]) for m in messages[1:]] == [
            ("user", "first question"),
            ("assistant", "first answer"),
            ("user", "second question"),
        ]

    @pytest.mark.asyncio
    async def test_explicit_history_overrides_stored_messages(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)
        history = [
            HistoryItem(role=MessageRole.USER, content="earlier"),
            HistoryItem(role=MessageRole.ASSISTANT, content="reply"),
        ]

        await _collect(orchestrator.stream_turn("now", ConversationPersistenceContext(history=history)))

        messages = model.stream_calls[0]["messages"]
        assert [m["content"] for m in messages[1:]] == ["earlier", "reply", "now"]

    @pytest.mark.asyncio
    async def test_instructions_replace_system_prompt(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        await _collect(orchestrator.stream_turn("hi", instructions="Be terse."))

        assert model.stream_calls[0]["messages"][0] == {"role": "system", "content": "Be terse."}


class TestFailures:
    """Tests for error and cancellation handling."""

    @pytest.mark.asyncio
    async def test_model_failure_after_partial_output_emits_error_and_skips_assistant(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("partial"), LlmClientError("API error: 500")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        events = await _collect(orchestrator.stream_turn("hello"))

        assert [e.kind for e in events] == [ChatStreamEventKind.TEXT, ChatStreamEventKind.ERROR]
        assert events[-1].content == "API error: 500"
        [summary] = conversation_service.list_conversations()
        messages = conversation_service.list_messages(summary.id)
        assert [m.role for m in messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_unexpected_failure_becomes_error_event(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[RuntimeError("boom")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        events = await _collect(orchestrator.stream_turn("hello"))

        assert events[-1].kind == ChatStreamEventKind.ERROR
        assert "boom" in events[-1].content

    @pytest.mark.asyncio
    async def test_abandoned_stream_does_not_persist_assistant(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("one"), TextDelta("two")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        stream = orchestrator.stream_turn("hello")
        first = await stream.__anext__()
        await stream.aclose()

        assert first.content == "one"
        [summary] = conversation_service.list_conversations()
        assert [m.role for m in conversation_service.list_messages(summary.id)] == [MessageRole.USER]


class TestConfirmationGate:
    """Tests for destructive tools paused behind reflection."""

    @pytest.mark.asyncio
    async def test_destructive_call_yields_action_card_and_is_not_executed(
        self, conversation_service, inline_prompts
    ) -> None:
        reflection_model = ScriptedChatModel(
            replies=[
                json.dumps(
                    {
                        "shouldReject": False,
                        "needsUserConfirmation": False,
                        "reason": "Single file",
                        "actionDescription": "Delete notes/x.md",
                    }
                )
            ]
        )
        store = PendingConfirmationStore()
        middleware = ReflectionMiddleware(ReflectionService(reflection_model, inline_prompts), store)
        model = ScriptedChatModel(
            rounds=[
                [ToolCallRequest("call_1", "obsidian_delete_file", {"filepath": "notes/x.md"})],
                [TextDelta("Please confirm the deletion.")],
            ]
        )
        gateway = FakeToolGateway(tools=["obsidian_delete_file"])
        orchestrator = _orchestrator(
            model, gateway, conversation_service, inline_prompts, middlewares=[middleware]
        )

        events = await _collect(orchestrator.stream_turn("delete x"))

        kinds = [e.kind for e in events]
        assert kinds == [
            ChatStreamEventKind.TOOL_CALL,
            ChatStreamEventKind.ACTION_CARD,
            ChatStreamEventKind.TEXT,
            ChatStreamEventKind.METADATA,
        ]
        card = events[1].action_card
        key = card.reflection_metadata.reflection_key
        assert gateway.calls == []
        assert store.get(key).arguments == {"filepath": "notes/x.md"}

        metadata = events[-1].metadata
        assert metadata.action_card.id == card.id
        stored = conversation_service.get_message(metadata.assistant_message_id)
        assert stored.action_card.planned_actions[0].source == "notes/x.md"

        tool_message = model.stream_calls[1]["messages"][-1]
        assert json.loads(tool_message["content"])["status"] == "PENDING_CONFIRMATION"


class TestConcurrency:
    """Tests for concurrent turns on one conversation."""

    @pytest.mark.asyncio
    async def test_two_simultaneous_turns_keep_all_messages(
        self, conversation_service, inline_prompts
    ) -> None:
        conversation = conversation_service.create_conversation(title="shared")
        model = ScriptedChatModel(rounds=[[TextDelta("a1")], [TextDelta("b1")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)
        context = ConversationPersistenceContext(conversation_id=conversation.id)

        await asyncio.gather(
            _collect(orchestrator.stream_turn("first", context)),
            _collect(orchestrator.stream_turn("second", context)),
        )

        messages = conversation_service.list_messages(conversation.id)
        assert len(messages) == 4
        assert {m.content for m in messages} == {"first", "second", "a1", "b1"}

    @pytest.mark.asyncio
    async def test_version_conflict_on_touch_is_retried(
        self, conversation_service, inline_prompts, monkeypatch
    ) -> None:
        conversation = conversation_service.create_conversation(title="shared")
        real_update = conversation_service.update_conversation
        calls = {"count": 0}

        def flaky_update(conversation_id, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConflictError("modified concurrently")
            return real_update(conversation_id, **kwargs)

        monkeypatch.setattr(conversation_service, "update_conversation", flaky_update)
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        events = await _collect(
            orchestrator.stream_turn("hi", ConversationPersistenceContext(conversation_id=conversation.id))
        )

        assert events[-1].kind == ChatStreamEventKind.METADATA
        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_persistent_conflict_surfaces_as_error(
        self, conversation_service, inline_prompts, monkeypatch
    ) -> None:
        calls = {"count": 0}

        def always_conflict(conversation_id, **kwargs):
            calls["count"] += 1
            raise ConflictError("modified concurrently")

        monkeypatch.setattr(conversation_service, "update_conversation", always_conflict)
        model = ScriptedChatModel(rounds=[[TextDelta("ok")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        events = await _collect(orchestrator.stream_turn("hi"))

        assert [e.kind for e in events] == [ChatStreamEventKind.TEXT, ChatStreamEventKind.ERROR]
        assert "modified concurrently" in events[-1].content
        assert calls["count"] == 3

        # The stored transcript agrees with the failed turn: no assistant reply
        [summary] = conversation_service.list_conversations()
        roles = [m.role for m in conversation_service.list_messages(summary.id)]
        assert roles == [MessageRole.USER]


class TestCompleteTurn:
    """Tests for the aggregated, non-streaming turn."""

    @pytest.mark.asyncio
    async def test_aggregates_text_and_identifiers(
        self, conversation_service, inline_prompts
    ) -> None:
        model = ScriptedChatModel(rounds=[[TextDelta("I deleted the file "), TextDelta("old.md")]])
        orchestrator = _orchestrator(model, FakeToolGateway(), conversation_service, inline_prompts)

        response = await orchestrator.complete_turn("remove old.md")

        assert response.text == "I deleted the file old.md"
        assert response.file_operation_result.action == FileOperationAction.DELETED
        assert conversation_service.get_message(response.assistant_message_id) is not None
