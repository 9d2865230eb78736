"""API dependency injection — service handle and caller identity."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request

from aikotoba.vault.errors import InvalidIdentity
from aikotoba.vault.identity import Account, Device, Identity
from aikotoba.vault.service import VaultService


def get_service(request: Request) -> VaultService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        from aikotoba.vault import build_service

        service = request.app.state.service = build_service()
    return service


def get_identity(
    x_account_id: str | None = Header(None),
    x_device_token: str | None = Header(None),
) -> Identity | None:
    """Signed-in account if present, else the anonymous device token."""
    try:
        if x_account_id:
            return Account(x_account_id)
        if x_device_token:
            return Device(x_device_token)
    except InvalidIdentity:
        return None
    return None


def require_identity(identity: Identity | None = Depends(get_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="identity_required")
    return identity
