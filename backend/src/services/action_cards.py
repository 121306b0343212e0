"""Build ActionCard payloads for tool calls awaiting confirmation."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ..models.reflection import (
    ActionCardPayload,
    ActionCardStatus,
    ActionType,
    PlannedActionPayload,
    ReflectionMetadata,
    ReflectionVerdict,
)

_OPERATIONS = {
    "obsidian_delete_file": "Delete",
    "obsidian_patch_content": "Patch",
    "obsidian_move_file": "Move",
}

_ACTION_TYPES = {
    "obsidian_delete_file": ActionType.DELETE,
    "obsidian_patch_content": ActionType.MODIFY,
    "obsidian_move_file": ActionType.MOVE,
}

_PATH_KEYS = ("filepath", "path", "source")


def _str_arg(arguments: Mapping[str, Any], key: str) -> Optional[str]:
    value = arguments.get(key)
    return None if value is None else str(value)


def extract_file_path(arguments: Mapping[str, Any]) -> Optional[str]:
    for key in _PATH_KEYS:
        value = _str_arg(arguments, key)
        if value is not None:
            return value
    return None


def build_action_card(
    tool_name: str,
    arguments: Mapping[str, Any],
    verdict: ReflectionVerdict,
    reflection_key: str,
    now: Optional[datetime] = None,
) -> ActionCardPayload:
    """Summarize a paused tool call as a single-entry ActionCard."""
    operation = _OPERATIONS.get(tool_name, "Modify")
    file_path = extract_file_path(arguments)
    destination = None
    if tool_name == "obsidian_move_file":
        destination = _str_arg(arguments, "destination")

    planned = PlannedActionPayload(
        id=str(uuid.uuid4()),
        type=_ACTION_TYPES.get(tool_name, ActionType.OTHER),
        source=file_path or "",
        destination=destination or file_path or "",
        description=verdict.action_description or f"{operation} {file_path or ''}".strip(),
        operation=operation.lower(),
        content=_str_arg(arguments, "content") or "",
        sort_order=0,
    )
    return ActionCardPayload(
        id=str(uuid.uuid4()),
        title=f"{operation} Operation",
        status=ActionCardStatus.PENDING,
        operation=operation.lower(),
        status_message="",
        created_at=now or datetime.now(timezone.utc),
        completed_at=None,
        planned_actions=[planned],
        reflection_metadata=ReflectionMetadata(
            reasoning=verdict.reason,
            warnings=list(verdict.warnings),
            needs_confirmation=verdict.needs_user_confirmation,
            reflection_key=reflection_key,
        ),
    )


__all__ = ["build_action_card", "extract_file_path"]
