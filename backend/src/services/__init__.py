"""Service layer for business logic and external integrations."""

from .chat_orchestrator import ChatOrchestrator, ConversationPersistenceContext, create_title
from .config import AppConfig, get_config, reload_config
from .confirmation_service import ConfirmationService
from .conversation_service import ConversationService
from .database import DatabaseService, init_database
from .errors import (
    ConflictError,
    ExternalServiceError,
    InputValidationError,
    NotFoundError,
    ServiceError,
)
from .file_operations import extract_file_operation
from .function_middleware import (
    FunctionInvocationContext,
    ReflectionMiddleware,
    ToolCallLoggingMiddleware,
    build_pipeline,
)
from .llm_client import LlmClientError, OpenAICompatibleChatModel, create_chat_model
from .pending_confirmations import PendingConfirmation, PendingConfirmationStore
from .prompt_loader import PromptLoader, PromptLoaderError
from .reflection import ReflectionError, ReflectionService
from .tool_gateway import McpToolGateway
from .vault_operations import VaultOperationService
from .vault_paths import normalize_vault_path

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "DatabaseService",
    "init_database",
    "ServiceError",
    "InputValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    "ConversationService",
    "McpToolGateway",
    "OpenAICompatibleChatModel",
    "LlmClientError",
    "create_chat_model",
    "PromptLoader",
    "PromptLoaderError",
    "ReflectionService",
    "ReflectionError",
    "PendingConfirmation",
    "PendingConfirmationStore",
    "FunctionInvocationContext",
    "ReflectionMiddleware",
    "ToolCallLoggingMiddleware",
    "build_pipeline",
    "extract_file_operation",
    "normalize_vault_path",
    "ChatOrchestrator",
    "ConversationPersistenceContext",
    "create_title",
    "VaultOperationService",
    "ConfirmationService",
]
