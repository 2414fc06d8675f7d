"""Encryption configuration exposed to clients."""

from __future__ import annotations

from fastapi import APIRouter

from ..dependencies import HubDep

router = APIRouter(prefix="/crypto", tags=["crypto"])


@router.get("/config")
async def get_crypto_config(hub: HubDep) -> dict[str, bool]:
    """Tell clients whether room content is end-to-end encrypted."""
    return {"e2eeEnabled": hub.e2ee_enabled}
