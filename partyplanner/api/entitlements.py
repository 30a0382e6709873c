"""
partyplanner/api/entitlements.py
Entitlements API: resolved features/limits, quota, per-event limits.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from partyplanner.core.auth import get_current_user_id
from partyplanner.core.errors import LimitExceededError
from partyplanner.features.entitlements.service import check_feature, resolve
from partyplanner.features.events.service import get_event_limits, require_event
from partyplanner.features.permissions.service import get_user_permissions, require_permission
from partyplanner.features.quota.service import get_creations_quota, warning_for
from partyplanner.features.subscriptions.service import can_add_guests, get_remaining_guest_slots
from partyplanner.models.entitlement import COLLABORATORS_PER_EVENT, GUESTS_PER_EVENT, PHOTOS_PER_EVENT

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


@router.get("")
async def get_entitlements(
    event_id: Optional[str] = Query(None, description="Scope to an event snapshot"),
    user_id: str = Depends(get_current_user_id),
):
    """Effective features and limits (-1 = unlimited)."""
    event = None
    owner_id = user_id
    if event_id:
        event = require_event(event_id)
        require_permission(user_id, event, "events.view")
        # Event entitlements follow the owner's account
        owner_id = event.user_id
    return {"data": resolve(owner_id, event).to_dict()}


@router.get("/quota")
async def get_quota(user_id: str = Depends(get_current_user_id)):
    quota = get_creations_quota(user_id)
    warning = warning_for(quota)
    return {"data": {**quota.to_dict(), "warning": warning.value if warning else None}}


@router.get("/features/{feature}")
async def check_feature_endpoint(
    feature: str,
    event_id: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
):
    event = require_event(event_id) if event_id else None
    if event:
        require_permission(user_id, event, "events.view")
    decision = check_feature(event.user_id if event else user_id, feature, event)
    return {"data": decision.to_dict()}


@router.get("/events/{event_id}/limits")
async def get_event_limits_endpoint(
    event_id: str,
    guests: int = Query(0, ge=0),
    collaborators: int = Query(0, ge=0),
    photos: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
):
    event = require_event(event_id)
    require_permission(user_id, event, "events.view")
    usage = {GUESTS_PER_EVENT: guests, COLLABORATORS_PER_EVENT: collaborators, PHOTOS_PER_EVENT: photos}
    return {
        "data": {
            "event_id": event.event_id,
            "limits": get_event_limits(event, event.user_id, usage),
            "permissions": sorted(get_user_permissions(user_id, event)),
        }
    }


@router.get("/events/{event_id}/guests/check")
async def check_guest_capacity(
    event_id: str,
    current: int = Query(..., ge=0),
    additional: int = Query(1, ge=0),
    user_id: str = Depends(get_current_user_id),
):
    """403 with reason "limit" when the guests would not fit."""
    event = require_event(event_id)
    require_permission(user_id, event, "guests.create")
    remaining = get_remaining_guest_slots(event, current)
    if not can_add_guests(event, current, additional):
        raise LimitExceededError(
            "Guest limit reached for this event",
            details={"reason": "limit", "limit_key": GUESTS_PER_EVENT, "remaining": remaining.to_raw()},
        )
    return {"data": {"allowed": True, "remaining": remaining.to_raw()}}
