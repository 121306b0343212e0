"""Chat routes: full-turn, streaming (SSE) and push (WebSocket)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from ...models.chat import ChatRequest, ChatResponse
from ...services.chat_orchestrator import ChatOrchestrator, ConversationPersistenceContext
from ...services.errors import InputValidationError
from ..dependencies import get_orchestrator
from ..streaming import SSE_HEADERS, SSE_SEPARATOR, push_events, sse_frames

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def _persistence_context(request: ChatRequest) -> ConversationPersistenceContext:
    return ConversationPersistenceContext(
        conversation_id=request.conversation_id,
        user_id=request.user_id,
        history=request.history,
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Run one chat turn and return the complete reply.

    **Request Body:**
    - `message`: User message (required, non-empty)
    - `history`: Optional explicit history; stored messages are used when omitted
    - `conversationId`: Existing conversation to continue (created when unknown)

    **Response:** `conversationId`, `userMessageId`, `assistantMessageId`, `text`,
    `fileOperationResult` and any `actionCards` awaiting confirmation.
    """
    orchestrator.validate_message(request.message)
    logger.info(f"Chat request: {request.message[:100]}")
    return await orchestrator.complete_turn(request.message, _persistence_context(request))


@router.post("/chat/stream")
async def chat_stream(
    request: ChatRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """
    Run one chat turn as Server-Sent Events.

    Frames, in model order:
    - untyped `data:` frames carry text deltas
    - `event: tool_call` carries the tool name
    - `event: action_card` carries the ActionCard JSON
    - `event: metadata` carries persisted identifiers (exactly once, last)
    - `event: error` carries a message and ends the stream

    A successful stream ends with `data: [DONE]`.
    """
    orchestrator.validate_message(request.message)
    logger.info(f"Chat stream request: {request.message[:100]}")
    events = orchestrator.stream_turn(request.message, _persistence_context(request))
    return EventSourceResponse(sse_frames(events), headers=SSE_HEADERS, sep=SSE_SEPARATOR)


@router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
):
    """Push-based chat: `{"type": "chat", "message": ...}` in, JSON event frames out."""
    await websocket.accept()
    try:
        while True:
            data = await websocket.receive_json()
            message_type = data.get("type") if isinstance(data, dict) else None

            if message_type == "ping":
                await websocket.send_json({"type": "pong"})
                continue
            if message_type != "chat":
                await websocket.send_json(
                    {"type": "error", "message": f"Unknown message type: {message_type}"}
                )
                continue

            try:
                request = ChatRequest.model_validate(data)
                orchestrator.validate_message(request.message)
            except ValidationError as e:
                await websocket.send_json({"type": "error", "message": str(e)})
                continue
            except InputValidationError as e:
                await websocket.send_json({"type": "error", "message": e.message})
                continue

            await push_events(
                websocket,
                orchestrator.stream_turn(request.message, _persistence_context(request)),
            )
    except WebSocketDisconnect:
        logger.info("Chat WebSocket client disconnected")
