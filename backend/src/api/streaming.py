"""Transport adapters for orchestrator event streams.

The orchestrator runs in a producer task that feeds a bounded queue; the
transport drains the queue and writes one frame per event. When the transport
stops early (client gone, cancellation) the producer is cancelled, which closes
the model stream without persisting a partial turn.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Dict, TypeVar

from fastapi import WebSocket, WebSocketDisconnect
from sse_starlette import ServerSentEvent

from ..models.chat import ChatStreamEvent, ChatStreamEventKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHANNEL_CAPACITY = 64
DONE_SENTINEL = "[DONE]"
SSE_SEPARATOR = "\n"
SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}

_END = object()


class _ProducerFailure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


async def bounded_channel(source: AsyncIterator[T], maxsize: int = CHANNEL_CAPACITY) -> AsyncIterator[T]:
    """Pump ``source`` through a bounded queue from a separate task.

    Items arrive in source order. An exception in the source is re-raised to
    the consumer after the items produced before it.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def produce() -> None:
        try:
            async for item in source:
                await queue.put(item)
        except Exception as e:
            await queue.put(_ProducerFailure(e))
        else:
            await queue.put(_END)
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    task = asyncio.create_task(produce())
    try:
        while True:
            item = await queue.get()
            if item is _END:
                break
            if isinstance(item, _ProducerFailure):
                raise item.error
            yield item
    finally:
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


# =============================================================================
# Server-Sent Events
# =============================================================================


def to_server_sent_event(event: ChatStreamEvent) -> ServerSentEvent:
    """Text deltas are untyped frames; everything else carries its kind as event name."""
    if event.kind == ChatStreamEventKind.TEXT:
        return ServerSentEvent(data=event.payload(), sep=SSE_SEPARATOR)
    return ServerSentEvent(data=event.payload(), event=event.kind.value, sep=SSE_SEPARATOR)


async def sse_frames(events: AsyncIterator[ChatStreamEvent]) -> AsyncIterator[ServerSentEvent]:
    """Frame an event stream, ending with ``data: [DONE]``.

    An error event is terminal: it is written and no sentinel follows.
    Exceptions never escape; they become an ``error`` frame.
    """
    try:
        async with contextlib.aclosing(bounded_channel(events)) as channel:
            async for event in channel:
                yield to_server_sent_event(event)
                if event.kind == ChatStreamEventKind.ERROR:
                    return
    except Exception as e:
        logger.exception(f"Chat stream failed: {e}")
        yield ServerSentEvent(data=str(e) or type(e).__name__, event="error", sep=SSE_SEPARATOR)
        return
    yield ServerSentEvent(data=DONE_SENTINEL, sep=SSE_SEPARATOR)


# =============================================================================
# WebSocket push
# =============================================================================


def to_push_frame(event: ChatStreamEvent) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"type": event.kind.value}
    if event.kind == ChatStreamEventKind.TEXT:
        frame["content"] = event.content
    elif event.kind == ChatStreamEventKind.TOOL_CALL:
        frame["name"] = event.content
    elif event.kind == ChatStreamEventKind.ERROR:
        frame["message"] = event.content
    elif event.kind == ChatStreamEventKind.ACTION_CARD and event.action_card is not None:
        frame["actionCard"] = event.action_card.model_dump(mode="json", by_alias=True)
    elif event.kind == ChatStreamEventKind.METADATA and event.metadata is not None:
        frame.update(event.metadata.model_dump(mode="json", by_alias=True))
    return frame


async def push_events(websocket: WebSocket, events: AsyncIterator[ChatStreamEvent]) -> None:
    """Send one JSON frame per event, then ``{"type": "done"}`` unless an error ended the turn."""
    try:
        async with contextlib.aclosing(bounded_channel(events)) as channel:
            async for event in channel:
                await websocket.send_json(to_push_frame(event))
                if event.kind == ChatStreamEventKind.ERROR:
                    return
    except WebSocketDisconnect:
        raise
    except Exception as e:
        logger.exception(f"Chat push failed: {e}")
        await websocket.send_json({"type": "error", "message": str(e) or type(e).__name__})
        return
    await websocket.send_json({"type": "done"})


__all__ = [
    "bounded_channel",
    "sse_frames",
    "push_events",
    "to_server_sent_event",
    "to_push_frame",
    "SSE_HEADERS",
    "DONE_SENTINEL",
]
