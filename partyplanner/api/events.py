"""
partyplanner/api/events.py
Events API: creation (consumes a credit, freezes entitlements), duplication.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from partyplanner.core.auth import get_current_user_id
from partyplanner.features.events.service import (
    create_event,
    duplicate_event,
    list_events,
    require_event,
)
from partyplanner.features.permissions.service import require_permission

router = APIRouter(prefix="/api/events", tags=["events"])


class CreateEventRequest(BaseModel):
    title: str


class DuplicateEventRequest(BaseModel):
    title: Optional[str] = None
    overrides: Optional[Dict[str, Any]] = None


@router.post("")
async def create_event_endpoint(request: CreateEventRequest, user_id: str = Depends(get_current_user_id)):
    """403 quota_exceeded when no creation credit is left."""
    event = create_event(user_id, request.title)
    return {"data": event.model_dump(mode="json")}


@router.get("")
async def list_events_endpoint(user_id: str = Depends(get_current_user_id)):
    events = list_events(user_id)
    return {"data": [e.model_dump(mode="json") for e in events], "count": len(events)}


@router.get("/{event_id}")
async def get_event_endpoint(event_id: str, user_id: str = Depends(get_current_user_id)):
    event = require_event(event_id)
    require_permission(user_id, event, "events.view")
    return {"data": event.model_dump(mode="json")}


@router.post("/{event_id}/duplicate")
async def duplicate_event_endpoint(
    event_id: str,
    request: DuplicateEventRequest,
    user_id: str = Depends(get_current_user_id),
):
    overrides = dict(request.overrides or {})
    if request.title:
        overrides["title"] = request.title
    event = duplicate_event(event_id, user_id, overrides)
    return {"data": event.model_dump(mode="json")}
