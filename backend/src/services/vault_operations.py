"""Direct vault modifications routed through the tool gateway."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..models.tools import ToolArguments
from ..models.vault import VaultModifyRequest, VaultModifyResponse
from .errors import InputValidationError
from .tool_gateway import McpToolGateway
from .vault_paths import normalize_vault_path

logger = logging.getLogger(__name__)

OPERATION_TOOLS: Dict[str, str] = {
    "append": "obsidian_append_content",
    "modify": "obsidian_patch_content",
    "patch": "obsidian_patch_content",
    "write": "obsidian_patch_content",
    "delete": "obsidian_delete_file",
    "create": "obsidian_create_file",
    "move": "obsidian_move_file",
}


class VaultOperationService:
    """Translate ``{operation, filePath, content}`` into gateway tool calls."""

    def __init__(self, gateway: McpToolGateway) -> None:
        self._gateway = gateway

    @staticmethod
    def resolve(request: VaultModifyRequest) -> tuple[str, str, ToolArguments]:
        """Return (tool_name, normalized_path, arguments) for a request.

        Raises:
            InputValidationError: For unknown operations or missing arguments.
        """
        operation = request.operation.strip().lower()
        tool_name = OPERATION_TOOLS.get(operation)
        if tool_name is None:
            raise InputValidationError(
                f"Unsupported operation: {request.operation}",
                {"operation": request.operation, "supported": sorted(OPERATION_TOOLS)},
            )

        path = normalize_vault_path(request.file_path)
        if not path:
            raise InputValidationError("filePath is required", {"field": "filePath"})

        content: Optional[str] = request.content
        arguments: ToolArguments = {"filepath": path}
        if tool_name == "obsidian_patch_content":
            arguments.update({"content": content or "", "operation": "append"})
        elif tool_name in ("obsidian_append_content", "obsidian_create_file"):
            arguments["content"] = content or ""
        elif tool_name == "obsidian_move_file":
            if not request.destination:
                raise InputValidationError("destination is required for move", {"field": "destination"})
            arguments["destination"] = normalize_vault_path(request.destination)
        return tool_name, path, arguments

    async def modify(self, request: VaultModifyRequest) -> VaultModifyResponse:
        """Run the operation; tool failures are reported in-band."""
        tool_name, path, arguments = self.resolve(request)
        result = await self._gateway.invoke_tool(tool_name, arguments)
        if result.is_error:
            logger.warning(
                f"Vault {request.operation} failed for {path}: {result.text}",
                extra={"tool": tool_name},
            )
        else:
            logger.info(f"Vault {request.operation} succeeded for {path}", extra={"tool": tool_name})
        return VaultModifyResponse(success=not result.is_error, message=result.text, file_path=path)


__all__ = ["VaultOperationService", "OPERATION_TOOLS"]
