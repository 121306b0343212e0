"""Conversation history routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response, status

from ...models.conversation import (
    Conversation,
    ConversationCreateRequest,
    ConversationCreateResponse,
    ConversationListResponse,
    ConversationUpdateRequest,
    Message,
    MessageArtifactsUpdate,
)
from ...services.chat_orchestrator import DEFAULT_TITLE
from ...services.conversation_service import MAX_PAGE_SIZE, ConversationService
from ...services.errors import InputValidationError, NotFoundError
from ..dependencies import get_conversation_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conversations"])


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    skip: int = Query(0, ge=0),
    take: int = Query(20),
    user_id: str | None = Query(None, alias="userId"),
    include_archived: bool = Query(False, alias="includeArchived"),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """List conversations, most recently updated first. `take` is clamped to 1..100."""
    take = max(1, min(take, MAX_PAGE_SIZE))
    items = conversations.list_conversations(
        user_id=user_id, include_archived=include_archived, skip=skip, take=take
    )
    return ConversationListResponse(conversations=items, skip=skip, take=take)


@router.get("/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Conversation with messages, action cards, planned actions and file operations."""
    conversation = conversations.get_conversation(conversation_id, include_messages=True)
    if conversation is None:
        raise NotFoundError(
            f"Conversation {conversation_id} not found", {"conversation_id": conversation_id}
        )
    return conversation


@router.post(
    "/conversations",
    response_model=ConversationCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(
    request: ConversationCreateRequest,
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Create an empty conversation; a blank title becomes the placeholder title."""
    title = (request.title or "").strip() or DEFAULT_TITLE
    conversation = conversations.create_conversation(title=title, user_id=request.user_id)
    return ConversationCreateResponse(id=conversation.id)


@router.patch("/conversations/{conversation_id}", response_model=Conversation)
async def update_conversation(
    conversation_id: str,
    request: ConversationUpdateRequest,
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Rename a conversation. A stale `rowVersion` yields 409."""
    title = request.title.strip()
    if not title:
        raise InputValidationError("Title must not be blank", {"field": "title"})
    return conversations.update_conversation(
        conversation_id,
        expected_version=request.row_version,
        title=title,
    )


@router.post("/conversations/{conversation_id}/archive", response_model=Conversation)
async def archive_conversation(
    conversation_id: str,
    conversations: ConversationService = Depends(get_conversation_service),
):
    return conversations.archive_conversation(conversation_id)


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Delete a conversation and, by cascade, all of its messages and artifacts."""
    if not conversations.delete_conversation(conversation_id):
        raise NotFoundError(
            f"Conversation {conversation_id} not found", {"conversation_id": conversation_id}
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/messages/{message_id}/artifacts", response_model=Message)
async def update_message_artifacts(
    message_id: str,
    request: MessageArtifactsUpdate,
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Attach or replace a message's ActionCard (with planned actions) and FileOperation."""
    return conversations.update_message_artifacts(
        message_id, action_card=request.action_card, file_operation=request.file_operation
    )
