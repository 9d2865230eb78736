"""Vault & notification routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from aikotoba.api.deps import get_identity, get_service, require_identity
from aikotoba.api.models import (
    ChallengeRequest,
    CreateEntryRequest,
    PasscodeRequest,
    SettingsUpdateRequest,
    UpdateEntryRequest,
    UpgradeRequest,
)
from aikotoba.notify.dal import (
    get_settings,
    list_notifications,
    mark_read,
    settings_to_dict,
    update_settings,
)
from aikotoba.vault.identity import Identity
from aikotoba.vault.service import VaultService

router = APIRouter(tags=["vault"])


def _tier_to_dict(tier) -> dict:
    return {"length": tier.length, "productId": tier.product_id, "combinations": tier.combinations}


# ─── Entries ─────────────────────────────────────────────────────────────


@router.post("/entries", status_code=201)
def api_create_entry(
    body: CreateEntryRequest,
    owner: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    entry = service.create_entry(
        owner,
        body.keyword,
        body.body,
        passcode=body.passcode,
        voice_url=body.voiceUrl,
        image_urls=body.imageUrls,
    )
    return entry.owner_view()


@router.get("/entries/{keyword}/status")
def api_entry_status(keyword: str, service: VaultService = Depends(get_service)):
    return {"status": service.entry_status(keyword).value}


@router.get("/entries/{keyword}")
def api_fetch_entry(
    keyword: str,
    viewer: Identity | None = Depends(get_identity),
    service: VaultService = Depends(get_service),
):
    entry = service.fetch_entry(keyword, viewer)
    return entry.owner_view() if entry.owned_by(viewer) else entry.public_view()


@router.patch("/entries/{entry_id}")
def api_update_entry(
    entry_id: str,
    body: UpdateEntryRequest,
    owner: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    changes = {}
    if "voiceUrl" in body.model_fields_set:
        changes["voice_url"] = body.voiceUrl
    if "imageUrls" in body.model_fields_set:
        changes["image_urls"] = body.imageUrls
    entry = service.update_entry(entry_id, owner, body=body.body, **changes)
    return entry.owner_view()


@router.delete("/entries/{entry_id}", status_code=204)
def api_delete_entry(
    entry_id: str,
    owner: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    service.delete_entry(entry_id, owner)


@router.post("/entries/{entry_id}/report", status_code=202)
def api_report_entry(
    entry_id: str,
    reporter: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    service.report_entry(entry_id, reporter)
    return {"status": "received"}


@router.post("/entries/{entry_id}/challenge")
def api_challenge(
    entry_id: str,
    body: ChallengeRequest,
    challenger: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    result = service.challenge(entry_id, challenger, body.guess)
    return {"result": result.to_wire()}


@router.post("/entries/{entry_id}/passcode")
def api_set_passcode(
    entry_id: str,
    body: PasscodeRequest,
    owner: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    return service.set_passcode(entry_id, owner, body.passcode).owner_view()


@router.post("/entries/{entry_id}/upgrade")
def api_upgrade(
    entry_id: str,
    body: UpgradeRequest,
    owner: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    entry = service.upgrade_length(entry_id, owner, body.targetLength, body.newPasscode)
    return entry.owner_view()


@router.get("/entries/{entry_id}/upgrades")
def api_available_upgrades(
    entry_id: str,
    owner: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    return {"upgrades": [_tier_to_dict(t) for t in service.available_upgrades(entry_id, owner)]}


@router.get("/me/entries")
def api_my_entries(
    owner: Identity = Depends(require_identity),
    service: VaultService = Depends(get_service),
):
    return {"entries": [e.owner_view() for e in service.list_owned(owner)]}


# ─── Notifications ───────────────────────────────────────────────────────


@router.get("/me/notification-settings")
def api_get_settings(identity: Identity = Depends(require_identity)):
    return settings_to_dict(get_settings(identity))


@router.patch("/me/notification-settings")
def api_update_settings(
    body: SettingsUpdateRequest,
    identity: Identity = Depends(require_identity),
):
    settings = update_settings(
        identity,
        push_enabled=body.pushEnabled,
        notify_on_stolen=body.notifyOnStolen,
        notify_on_attempts=body.notifyOnAttempts,
        attempt_threshold=body.attemptThreshold,
    )
    return settings_to_dict(settings)


@router.get("/me/notifications")
def api_list_notifications(
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(require_identity),
):
    return {"notifications": list_notifications(identity, limit)}


@router.post("/me/notifications/{notification_id}/read")
def api_mark_read(notification_id: str, identity: Identity = Depends(require_identity)):
    if not mark_read(identity, notification_id):
        return JSONResponse({"error": "not_found"}, status_code=404)
    return {"status": "ok"}
