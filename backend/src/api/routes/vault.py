"""Direct vault modification route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...models.vault import VaultModifyRequest, VaultModifyResponse
from ..dependencies import ServiceContainer, get_container

router = APIRouter(prefix="/vault", tags=["vault"])


@router.post("/modify", response_model=VaultModifyResponse)
async def modify_vault(
    request: VaultModifyRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Apply one file operation through the tool gateway.

    **Operations:** `append`, `modify`/`patch`/`write` (appended patch), `delete`,
    `create`, `move` (requires `destination`).

    Tool failures are returned in-band as `{"success": false, ...}` with HTTP 200.
    Unknown operations are rejected with 400.
    """
    return await container.vault.modify(request)
