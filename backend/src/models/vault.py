"""Pydantic models for direct vault modification."""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from .reflection import CamelModel


class VaultModifyRequest(CamelModel):
    operation: str = Field(..., min_length=1, description="append, modify, patch, write, delete, create or move")
    file_path: str = Field(..., min_length=1)
    content: Optional[str] = None
    destination: Optional[str] = Field(None, description="Target path for move")


class VaultModifyResponse(CamelModel):
    """Tool errors are reported here rather than as HTTP failures."""

    success: bool
    message: str
    file_path: str


class ActionCardDecisionResponse(CamelModel):
    success: bool
    message: str
    function_name: str


__all__ = ["VaultModifyRequest", "VaultModifyResponse", "ActionCardDecisionResponse"]
