"""Unit tests for the reflection safety check."""

from __future__ import annotations

import asyncio
import json

import pytest

from backend.src.models.reflection import ReflectionVerdict
from backend.src.services.llm_client import LlmClientError
from backend.src.services.reflection import (
    MISSING_REASON,
    ReflectionError,
    ReflectionService,
    canonical_json,
    enforce_confirmation_policy,
    strip_code_fences,
)
from backend.tests.fakes import ScriptedChatModel


def verdict_json(**fields) -> str:
    body = {"shouldReject": False, "needsUserConfirmation": False, "reason": "ok"}
    body.update(fields)
    return json.dumps(body)


class SlowModel(ScriptedChatModel):
    async def complete(self, messages):
        await asyncio.sleep(1)
        return verdict_json()


class TestHelpers:
    def test_canonical_json_is_sorted_and_compact(self) -> None:
        assert canonical_json({"b": 1, "a": "é"}) == '{"a":"é","b":1}'

    def test_strip_code_fences(self) -> None:
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_policy_forces_confirmation_for_always_confirm_tools(self) -> None:
        verdict = enforce_confirmation_policy("obsidian_patch_content", ReflectionVerdict(reason="fine"))

        assert verdict.needs_user_confirmation is True

    def test_policy_flags_rejected_destructive_calls_too(self) -> None:
        rejected = ReflectionVerdict(should_reject=True, reason="bad")

        verdict = enforce_confirmation_policy("obsidian_delete_file", rejected)

        assert verdict.needs_user_confirmation is True
        assert verdict.should_reject is True
        assert verdict.reason == "bad"

    def test_policy_leaves_other_tools_alone(self) -> None:
        assert (
            enforce_confirmation_policy("obsidian_append_content", ReflectionVerdict())
            .needs_user_confirmation
            is False
        )


class TestReflect:
    """Tests for ReflectionService.reflect()."""

    @pytest.mark.asyncio
    async def test_prompt_contains_tool_and_canonical_arguments(self, inline_prompts) -> None:
        model = ScriptedChatModel(replies=[verdict_json()])
        service = ReflectionService(model, inline_prompts)

        await service.reflect("obsidian_delete_file", {"filepath": "a.md", "confirm": True})

        [messages] = model.complete_calls
        assert messages[0]["role"] == "system"
        prompt = messages[1]["content"]
        assert "Operation: obsidian_delete_file" in prompt
        assert 'Arguments: {"confirm":true,"filepath":"a.md"}' in prompt

    @pytest.mark.asyncio
    async def test_fenced_response_is_parsed(self, inline_prompts) -> None:
        reply = "```json\n" + verdict_json(shouldReject=True, reason="System path") + "\n```"
        service = ReflectionService(ScriptedChatModel(replies=[reply]), inline_prompts)

        verdict = await service.reflect("obsidian_delete_file", {"filepath": ".obsidian/app.json"})

        assert verdict.should_reject is True
        assert verdict.reason == "System path"

    @pytest.mark.asyncio
    async def test_delete_always_needs_confirmation(self, inline_prompts) -> None:
        service = ReflectionService(ScriptedChatModel(replies=[verdict_json()]), inline_prompts)

        verdict = await service.reflect("obsidian_delete_file", {"filepath": "a.md"})

        assert verdict.needs_user_confirmation is True
        assert verdict.should_reject is False

    @pytest.mark.asyncio
    async def test_missing_reason_gets_placeholder(self, inline_prompts) -> None:
        service = ReflectionService(ScriptedChatModel(replies=[verdict_json(reason="")]), inline_prompts)

        verdict = await service.reflect("obsidian_append_content", {"filepath": "a.md"})

        assert verdict.reason == MISSING_REASON

    @pytest.mark.asyncio
    async def test_lists_and_warnings_are_kept(self, inline_prompts) -> None:
        reply = verdict_json(safetyChecks=["path exact"], warnings=["large file"])
        service = ReflectionService(ScriptedChatModel(replies=[reply]), inline_prompts)

        verdict = await service.reflect("obsidian_append_content", {"filepath": "a.md"})

        assert verdict.safety_checks == ["path exact"]
        assert verdict.warnings == ["large file"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["", "not json", "[1, 2]"])
    async def test_unparseable_response_raises(self, inline_prompts, reply) -> None:
        service = ReflectionService(ScriptedChatModel(replies=[reply]), inline_prompts)

        with pytest.raises(ReflectionError):
            await service.reflect("obsidian_delete_file", {"filepath": "a.md"})

    @pytest.mark.asyncio
    async def test_model_failure_raises(self, inline_prompts) -> None:
        model = ScriptedChatModel(replies=[LlmClientError("API error: 503")])
        service = ReflectionService(model, inline_prompts)

        with pytest.raises(ReflectionError) as exc_info:
            await service.reflect("obsidian_delete_file", {"filepath": "a.md"})

        assert "API error: 503" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_raises(self, inline_prompts) -> None:
        service = ReflectionService(SlowModel(), inline_prompts, timeout=0.01)

        with pytest.raises(ReflectionError):
            await service.reflect("obsidian_delete_file", {"filepath": "a.md"})
