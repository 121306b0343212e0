"""Confirm or cancel operations paused behind an ActionCard."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...models.vault import ActionCardDecisionResponse
from ..dependencies import ServiceContainer, get_container

router = APIRouter(prefix="/actioncards", tags=["action-cards"])


@router.post("/{reflection_key}/confirm", response_model=ActionCardDecisionResponse)
async def confirm_action_card(
    reflection_key: str,
    container: ServiceContainer = Depends(get_container),
):
    """Run the paused tool call. 404 when the key is unknown, expired or already used."""
    return await container.confirmations.confirm(reflection_key)


@router.post("/{reflection_key}/cancel", response_model=ActionCardDecisionResponse)
async def cancel_action_card(
    reflection_key: str,
    container: ServiceContainer = Depends(get_container),
):
    """Discard the paused tool call. 404 when the key is unknown, expired or already used."""
    return container.confirmations.cancel(reflection_key)
