"""System routes for provider info and health."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import ServiceContainer, get_container

router = APIRouter()


@router.get("/api/llm/provider")
async def get_llm_provider(container: ServiceContainer = Depends(get_container)):
    """Name of the configured chat provider."""
    return {"provider": container.config.llm_provider}


@router.get("/health")
async def health(container: ServiceContainer = Depends(get_container)):
    """Health check; reports tool gateway availability without failing when it is down."""
    return {"status": "healthy", "toolGateway": await container.gateway.health()}
