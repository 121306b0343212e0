"""Models for reflection verdicts and the ActionCard wire payload."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ActionCardStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class ActionType(str, Enum):
    MOVE = "Move"
    DELETE = "Delete"
    CREATE = "Create"
    COPY = "Copy"
    RENAME = "Rename"
    MODIFY = "Modify"
    OTHER = "Other"


class ReflectionVerdict(CamelModel):
    """Structured safety verdict returned by the reflection model."""

    should_reject: bool = False
    needs_user_confirmation: bool = False
    reason: str = ""
    action_description: str = ""
    safety_checks: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class PlannedActionPayload(CamelModel):
    """One file touched by an ActionCard."""

    id: str
    type: ActionType = ActionType.OTHER
    source: str = ""
    destination: Optional[str] = None
    description: str = ""
    operation: str = ""
    content: str = ""
    sort_order: int = 0


class ReflectionMetadata(CamelModel):
    reasoning: str = ""
    warnings: List[str] = Field(default_factory=list)
    needs_confirmation: bool = True
    reflection_key: str = ""


class ActionCardPayload(CamelModel):
    """User-facing summary of a paused file-changing operation."""

    id: str
    title: str
    status: ActionCardStatus = ActionCardStatus.PENDING
    operation: str = ""
    status_message: str = ""
    created_at: datetime
    completed_at: Optional[datetime] = None
    planned_actions: List[PlannedActionPayload] = Field(default_factory=list)
    reflection_metadata: ReflectionMetadata = Field(default_factory=ReflectionMetadata)

    def to_wire(self) -> str:
        """Serialize to the camelCase JSON sent to clients and stored."""
        return self.model_dump_json(by_alias=True)


__all__ = [
    "CamelModel",
    "ActionCardStatus",
    "ActionType",
    "ReflectionVerdict",
    "PlannedActionPayload",
    "ReflectionMetadata",
    "ActionCardPayload",
]
