"""Pydantic models for tool gateway calls and middleware outcomes."""

from __future__ import annotations

from typing import Any, Dict, Literal, Union

from pydantic import BaseModel, Field, JsonValue

from .reflection import ActionCardPayload, ReflectionVerdict

# Argument maps cross the model/gateway boundary as plain JSON values.
ToolArguments = Dict[str, JsonValue]


class ToolDefinition(BaseModel):
    """A tool advertised by the external gateway."""

    name: str = Field(..., min_length=1, description="Tool name as the gateway knows it")
    description: str = Field("", description="Human-readable summary for the model")
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema of the tool arguments",
    )

    def to_openai_tool(self) -> Dict[str, Any]:
        """Render as an OpenAI-compatible function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class ToolResult(BaseModel):
    """Outcome of a single gateway invocation."""

    is_error: bool = False
    text: str = ""


class ToolCompleted(BaseModel):
    """The real tool ran (successfully or not)."""

    kind: Literal["completed"] = "completed"
    result: ToolResult


class ToolRejected(BaseModel):
    """A middleware refused the call."""

    kind: Literal["rejected"] = "rejected"
    reason: str


class ToolPendingConfirmation(BaseModel):
    """A middleware paused the call until the user confirms it."""

    kind: Literal["pending_confirmation"] = "pending_confirmation"
    reflection_key: str
    verdict: ReflectionVerdict
    action_card: ActionCardPayload


ToolOutcome = Union[ToolCompleted, ToolRejected, ToolPendingConfirmation]


__all__ = [
    "ToolArguments",
    "ToolDefinition",
    "ToolResult",
    "ToolCompleted",
    "ToolRejected",
    "ToolPendingConfirmation",
    "ToolOutcome",
]
