"""Shared, lazily connected client for the external MCP tool gateway.

The gateway is optional: when it cannot be reached the assistant keeps working
without tools. A failed connection attempt is cached for ``retry_after``
seconds; the first caller after that window performs one fresh attempt that
all concurrent callers wait on.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from typing import Any, Callable, Dict, List, Optional

from fastmcp import Client
from fastmcp.client.transports import StreamableHttpTransport

from ..models.tools import ToolArguments, ToolDefinition, ToolResult

logger = logging.getLogger(__name__)

NO_RESPONSE_MESSAGE = "Operation failed: No response from tool."

ClientFactory = Callable[[], Client]


class McpToolGateway:
    """Owns one fastmcp ``Client`` session for the lifetime of the app."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        connect_timeout: float = 15.0,
        retry_after: float = 30.0,
        client_factory: Optional[ClientFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.endpoint = endpoint
        self._api_key = api_key
        self._connect_timeout = connect_timeout
        self._retry_after = retry_after
        self._client_factory = client_factory or self._default_factory
        self._has_factory = client_factory is not None
        self._clock = clock

        self._lock = asyncio.Lock()
        self._client: Optional[Client] = None
        self._stack: Optional[AsyncExitStack] = None
        self._failed_at: Optional[float] = None
        self.connect_attempts = 0

    @property
    def configured(self) -> bool:
        return bool(self.endpoint) or self._has_factory

    def _default_factory(self) -> Client:
        headers: Dict[str, str] = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        transport = StreamableHttpTransport(self.endpoint, headers=headers)
        return Client(
            transport,
            timeout=self._connect_timeout,
            init_timeout=self._connect_timeout,
        )

    def _failure_is_fresh(self) -> bool:
        return (
            self._failed_at is not None
            and self._clock() - self._failed_at < self._retry_after
        )

    async def get_client(self) -> Optional[Client]:
        """Return the connected client, or ``None`` when the gateway is unavailable."""
        if self._client is not None:
            return self._client
        if not self.configured or self._failure_is_fresh():
            return None

        async with self._lock:
            # Another waiter may have finished the attempt while we queued
            if self._client is not None:
                return self._client
            if self._failure_is_fresh():
                return None

            self.connect_attempts += 1
            stack = AsyncExitStack()
            try:
                client = self._client_factory()
                await stack.enter_async_context(client)
            except Exception as e:
                await stack.aclose()
                self._failed_at = self._clock()
                logger.warning(
                    f"Tool gateway unavailable, continuing without tools: {e}",
                    extra={"endpoint": self.endpoint, "attempt": self.connect_attempts},
                )
                return None

            self._client = client
            self._stack = stack
            self._failed_at = None
            logger.info("Connected to tool gateway", extra={"endpoint": self.endpoint})
            return client

    async def list_tools(self) -> List[ToolDefinition]:
        """List gateway tools; an unreachable gateway yields an empty manifest."""
        client = await self.get_client()
        if client is None:
            return []
        try:
            tools = await client.list_tools()
        except Exception as e:
            logger.error(f"Failed to list gateway tools: {e}")
            return []
        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema or {"type": "object", "properties": {}},
            )
            for tool in tools
        ]

    async def invoke_tool(self, name: str, arguments: ToolArguments) -> ToolResult:
        """Invoke a tool. Every failure comes back as an error result."""
        client = await self.get_client()
        if client is None:
            return ToolResult(is_error=True, text="Tool gateway is not available")
        try:
            result = await client.call_tool(name, dict(arguments), raise_on_error=False)
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}", extra={"tool": name})
            return ToolResult(is_error=True, text=f"Tool {name} failed: {e}")

        text = _first_text(result.content)
        if text is None:
            return ToolResult(is_error=True, text=NO_RESPONSE_MESSAGE)
        return ToolResult(is_error=bool(result.is_error), text=text)

    async def health(self) -> Dict[str, Any]:
        """Availability summary for health checks. Never raises."""
        tools = await self.list_tools()
        return {"available": self._client is not None, "toolCount": len(tools)}

    async def close(self) -> None:
        async with self._lock:
            stack, self._stack, self._client = self._stack, None, None
        if stack is not None:
            try:
                await stack.aclose()
            except Exception as e:
                logger.warning(f"Error while closing tool gateway session: {e}")


def _first_text(content: Any) -> Optional[str]:
    for block in content or []:
        text = getattr(block, "text", None)
        if text is not None:
            return text
    return None


__all__ = ["McpToolGateway", "NO_RESPONSE_MESSAGE"]
