"""Service wiring and FastAPI dependency accessors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.requests import HTTPConnection

from ..services.chat_orchestrator import ChatOrchestrator
from ..services.config import AppConfig, get_config
from ..services.confirmation_service import ConfirmationService
from ..services.conversation_service import ConversationService
from ..services.database import DatabaseService
from ..services.function_middleware import ReflectionMiddleware, ToolCallLoggingMiddleware
from ..services.llm_client import create_chat_model
from ..services.pending_confirmations import PendingConfirmationStore
from ..services.prompt_loader import PromptLoader
from ..services.reflection import ReflectionService
from ..services.tool_gateway import McpToolGateway
from ..services.vault_operations import VaultOperationService


@dataclass
class ServiceContainer:
    """Explicitly owned application services (one per app instance)."""

    config: AppConfig
    database: DatabaseService
    conversations: ConversationService
    gateway: McpToolGateway
    pending: PendingConfirmationStore
    orchestrator: ChatOrchestrator
    vault: VaultOperationService
    confirmations: ConfirmationService


def build_container(config: Optional[AppConfig] = None) -> ServiceContainer:
    """Wire production services from configuration. Nothing connects yet."""
    config = config or get_config()
    database = DatabaseService(config.database_path)
    conversations = ConversationService(database)
    gateway = McpToolGateway(
        config.mcp_endpoint,
        api_key=config.mcp_api_key,
        connect_timeout=config.mcp_connect_timeout_seconds,
        retry_after=config.mcp_retry_after_seconds,
    )
    pending = PendingConfirmationStore(ttl_seconds=config.confirmation_ttl_seconds)
    prompts = PromptLoader()
    reflection = ReflectionService(
        create_chat_model(config, purpose="reflection"),
        prompts,
        timeout=config.reflection_timeout_seconds,
    )
    orchestrator = ChatOrchestrator(
        create_chat_model(config),
        gateway,
        conversations,
        middlewares=[
            ToolCallLoggingMiddleware(),
            ReflectionMiddleware(reflection, pending, fail_closed=config.reflection_fail_closed),
        ],
        prompt_loader=prompts,
    )
    return ServiceContainer(
        config=config,
        database=database,
        conversations=conversations,
        gateway=gateway,
        pending=pending,
        orchestrator=orchestrator,
        vault=VaultOperationService(gateway),
        confirmations=ConfirmationService(pending, gateway, conversations),
    )


def get_container(connection: HTTPConnection) -> ServiceContainer:
    return connection.app.state.container


def get_orchestrator(container: ServiceContainer = Depends(get_container)) -> ChatOrchestrator:
    return container.orchestrator


def get_conversation_service(
    container: ServiceContainer = Depends(get_container),
) -> ConversationService:
    return container.conversations


__all__ = [
    "ServiceContainer",
    "build_container",
    "get_container",
    "get_orchestrator",
    "get_conversation_service",
]
