"""OpenAI-compatible chat completion client (LM Studio, OpenRouter, NanoGPT)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

import httpx

from .config import AppConfig

logger = logging.getLogger(__name__)


class LlmClientError(Exception):
    """Raised when the model endpoint cannot produce a response."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


@dataclass(frozen=True)
class TextDelta:
    """Incremental (never cumulative) text from the model."""

    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    """A fully assembled tool call requested by the model."""

    call_id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


ModelIncrement = Union[TextDelta, ToolCallRequest]


class ChatModel(Protocol):
    """The LLM capability used by the orchestrator and the reflection service."""

    provider: str
    model: str

    def stream(
        self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[ModelIncrement]: ...

    async def complete(self, messages: List[Dict[str, Any]]) -> str: ...


class OpenAICompatibleChatModel:
    """Chat model speaking the ``/chat/completions`` protocol over httpx."""

    def __init__(
        self,
        endpoint: str,
        model: str,
        api_key: Optional[str] = None,
        *,
        provider: str = "lmstudio",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.provider = provider
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if self.provider == "openrouter":
            headers["HTTP-Referer"] = "http://localhost"
            headers["X-Title"] = "Vault Assistant"
        return headers

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def stream(
        self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[ModelIncrement]:
        """Stream one model response.

        Text deltas are yielded as they arrive. Tool calls are buffered by index
        and yielded once the response is complete, in index order.

        Raises:
            LlmClientError: On HTTP errors, timeouts or transport failures.
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        try:
            async with self._http_client() as client:
                async with client.stream(
                    "POST",
                    f"{self.endpoint}/chat/completions",
                    headers=self._headers(),
                    json=payload,
                ) as response:
                    if response.is_error:
                        await response.aread()
                    response.raise_for_status()
                    async for increment in self._process_stream(response):
                        yield increment
        except httpx.HTTPStatusError as e:
            logger.error(f"{self.provider} API error: {e.response.status_code} - {e.response.text}")
            raise LlmClientError(
                f"API error: {e.response.status_code}",
                {"provider": self.provider, "status_code": e.response.status_code},
            ) from e
        except httpx.TimeoutException as e:
            logger.error(f"{self.provider} API timeout")
            raise LlmClientError("Request timeout - please try again", {"provider": self.provider}) from e
        except httpx.HTTPError as e:
            logger.error(f"{self.provider} transport error: {e}")
            raise LlmClientError(f"Model endpoint unreachable: {e}", {"provider": self.provider}) from e

    async def _process_stream(self, response: httpx.Response) -> AsyncIterator[ModelIncrement]:
        tool_calls_buffer: Dict[int, Dict[str, Any]] = {}

        async for line in response.aiter_lines():
            if not line.startswith("data: "):
                continue

            data_str = line[6:]  # Remove "data: " prefix
            if data_str.strip() == "[DONE]":
                break

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                continue

            choices = data.get("choices", [])
            if not choices:
                continue

            delta = choices[0].get("delta") or {}

            if delta.get("content"):
                yield TextDelta(delta["content"])

            for tc in delta.get("tool_calls") or []:
                idx = tc.get("index", 0)
                buffered = tool_calls_buffer.setdefault(
                    idx, {"id": "", "name": "", "arguments": ""}
                )
                if tc.get("id"):
                    buffered["id"] = tc["id"]
                function = tc.get("function") or {}
                if function.get("name"):
                    buffered["name"] = function["name"]
                if function.get("arguments"):
                    buffered["arguments"] += function["arguments"]

        for idx in sorted(tool_calls_buffer):
            buffered = tool_calls_buffer[idx]
            if not buffered["name"]:
                continue
            yield ToolCallRequest(
                call_id=buffered["id"] or f"call_{idx}",
                name=buffered["name"],
                arguments=_parse_arguments(buffered["name"], buffered["arguments"]),
            )

    async def complete(self, messages: List[Dict[str, Any]]) -> str:
        """Run a non-streaming completion and return the message text."""
        try:
            async with self._http_client() as client:
                response = await client.post(
                    f"{self.endpoint}/chat/completions",
                    headers=self._headers(),
                    json={"model": self.model, "messages": messages, "stream": False},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise LlmClientError(
                f"API error: {e.response.status_code}",
                {"provider": self.provider, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise LlmClientError(f"Model request failed: {e}", {"provider": self.provider}) from e

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LlmClientError("Malformed completion response", {"provider": self.provider}) from e


def _parse_arguments(name: str, raw: str) -> Dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Malformed arguments for tool {name}, using empty map", extra={"raw": raw[:200]})
        return {}
    return parsed if isinstance(parsed, dict) else {}


def create_chat_model(config: AppConfig, purpose: str = "chat") -> OpenAICompatibleChatModel:
    """Build the model for the configured provider.

    ``purpose="reflection"`` uses REFLECTION_MODEL when it is set.
    """
    settings = config.provider_settings
    model = settings.model
    if purpose == "reflection" and config.reflection_model:
        model = config.reflection_model
    return OpenAICompatibleChatModel(
        endpoint=settings.endpoint,
        model=model,
        api_key=settings.api_key,
        provider=config.llm_provider,
        timeout=config.llm_request_timeout_seconds,
    )


__all__ = [
    "LlmClientError",
    "TextDelta",
    "ToolCallRequest",
    "ModelIncrement",
    "ChatModel",
    "OpenAICompatibleChatModel",
    "create_chat_model",
]
