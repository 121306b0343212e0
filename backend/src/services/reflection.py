"""LLM-driven safety check for tool calls that change the vault."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pydantic import ValidationError

from ..models.reflection import ReflectionVerdict
from .llm_client import ChatModel, LlmClientError
from .prompt_loader import REFLECTION_PROMPT, PromptLoader

logger = logging.getLogger(__name__)

REFLECTION_SYSTEM_PROMPT = (
    "You are a safety validator for file operations. Always respond with valid JSON only. "
    "Do not wrap your response in markdown code fences or any other formatting. "
    "Return raw JSON directly."
)

MISSING_REASON = "Reflection completed but reason not provided"

# Destructive tools that always need the user's confirmation
ALWAYS_CONFIRM_TOOLS: FrozenSet[str] = frozenset(
    {"obsidian_delete_file", "obsidian_patch_content", "obsidian_move_file"}
)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```$", re.DOTALL)


class ReflectionError(Exception):
    """Raised when a verdict cannot be obtained or parsed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


def canonical_json(arguments: Mapping[str, Any]) -> str:
    """Deterministic compact JSON rendering of tool arguments."""
    return json.dumps(arguments, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    trimmed = text.strip()
    match = _FENCE_RE.match(trimmed)
    return match.group(1).strip() if match else trimmed


def enforce_confirmation_policy(
    tool_name: str,
    verdict: ReflectionVerdict,
    always_confirm: FrozenSet[str] = ALWAYS_CONFIRM_TOOLS,
) -> ReflectionVerdict:
    """Force needs_user_confirmation for always-confirm tools, whatever else the model said."""
    if tool_name in always_confirm and not verdict.needs_user_confirmation:
        logger.info(
            f"Overriding reflection verdict for {tool_name}: confirmation is mandatory",
            extra={"tool": tool_name},
        )
        return verdict.model_copy(update={"needs_user_confirmation": True})
    return verdict


class ReflectionService:
    """Asks a (possibly separate) model to classify a tool call's risk."""

    def __init__(
        self,
        model: ChatModel,
        prompt_loader: Optional[PromptLoader] = None,
        *,
        timeout: float = 10.0,
        always_confirm: FrozenSet[str] = ALWAYS_CONFIRM_TOOLS,
    ) -> None:
        self._model = model
        self._prompts = prompt_loader or PromptLoader()
        self._timeout = timeout
        self.always_confirm = always_confirm

    def build_prompt(self, tool_name: str, arguments: Mapping[str, Any]) -> str:
        return self._prompts.load(
            REFLECTION_PROMPT,
            {
                "tool_name": tool_name,
                "arguments_json": canonical_json(arguments),
                "always_confirm": sorted(self.always_confirm),
            },
        )

    async def reflect(self, tool_name: str, arguments: Mapping[str, Any]) -> ReflectionVerdict:
        """Return the verdict for one tool call.

        Raises:
            ReflectionError: If the model call fails, times out, or returns
                something that is not a verdict.
        """
        messages = [
            {"role": "system", "content": REFLECTION_SYSTEM_PROMPT},
            {"role": "user", "content": self.build_prompt(tool_name, arguments)},
        ]
        try:
            response_text = await asyncio.wait_for(
                self._model.complete(messages), timeout=self._timeout or None
            )
        except asyncio.TimeoutError as e:
            raise ReflectionError(f"Reflection timed out for {tool_name}", {"tool": tool_name}) from e
        except LlmClientError as e:
            raise ReflectionError(f"Reflection call failed: {e.message}", {"tool": tool_name}) from e

        cleaned = strip_code_fences(response_text or "")
        if not cleaned:
            raise ReflectionError("Reflection model returned an empty response", {"tool": tool_name})

        try:
            verdict = ReflectionVerdict.model_validate_json(cleaned)
        except ValidationError as e:
            logger.warning(
                f"Failed to parse reflection response for {tool_name}",
                extra={"tool": tool_name, "response": cleaned[:500]},
            )
            raise ReflectionError("Reflection response is not a valid verdict", {"tool": tool_name}) from e

        if not verdict.reason.strip():
            verdict = verdict.model_copy(update={"reason": MISSING_REASON})

        verdict = enforce_confirmation_policy(tool_name, verdict, self.always_confirm)
        logger.info(
            f"Reflection completed for {tool_name}: reject={verdict.should_reject}, "
            f"confirm={verdict.needs_user_confirmation}",
            extra={"tool": tool_name, "reason": verdict.reason},
        )
        return verdict


__all__ = [
    "ReflectionService",
    "ReflectionError",
    "ALWAYS_CONFIRM_TOOLS",
    "REFLECTION_SYSTEM_PROMPT",
    "canonical_json",
    "strip_code_fences",
    "enforce_confirmation_policy",
]
