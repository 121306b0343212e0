"""Shared fixtures for unit and integration tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from backend.src.services.conversation_service import ConversationService
from backend.src.services.database import DatabaseService
from backend.src.services.prompt_loader import PromptLoader


@pytest.fixture
def database(tmp_path: Path) -> DatabaseService:
    db = DatabaseService(tmp_path / "assistant.db")
    db.initialize()
    return db


@pytest.fixture
def conversation_service(database: DatabaseService) -> ConversationService:
    return ConversationService(database)


@pytest.fixture
def inline_prompts(tmp_path: Path) -> PromptLoader:
    """PromptLoader that always uses the inline templates."""
    return PromptLoader(prompts_dir=tmp_path / "no-prompts")
