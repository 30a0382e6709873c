"""
partyplanner/api/collaborators.py
Collaborators API: invite (limit-checked), accept, roles, removal.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from partyplanner.core.auth import get_current_user_id
from partyplanner.features.collaborators.service import (
    accept_invitation,
    assign_roles,
    invite_collaborator,
    list_collaborators,
    remove_collaborator,
    set_custom_role,
)
from partyplanner.features.entitlements.service import assert_can
from partyplanner.features.events.service import require_event
from partyplanner.features.permissions.service import require_permission

router = APIRouter(prefix="/api/events/{event_id}/collaborators", tags=["collaborators"])


class InviteRequest(BaseModel):
    user_id: str
    roles: Optional[List[str]] = None
    custom_role_id: Optional[str] = None


class RolesRequest(BaseModel):
    roles: List[str]


class CustomRoleRequest(BaseModel):
    custom_role_id: Optional[str] = None


@router.get("")
async def list_collaborators_endpoint(event_id: str, user_id: str = Depends(get_current_user_id)):
    event = require_event(event_id)
    require_permission(user_id, event, "collaborators.view")
    rows = list_collaborators(event_id)
    return {"data": [c.to_dict() for c in rows], "count": len(rows)}


@router.post("")
async def invite_endpoint(event_id: str, request: InviteRequest, user_id: str = Depends(get_current_user_id)):
    """403 limit_exceeded when the event's collaborator limit is reached."""
    event = require_event(event_id)
    require_permission(user_id, event, "collaborators.invite")
    assert_can(event.user_id, "collaborators.manage", event)
    collaborator = invite_collaborator(
        event,
        user_id,
        request.user_id,
        roles=request.roles,
        custom_role_id=request.custom_role_id,
    )
    return {"data": collaborator.to_dict()}


@router.post("/accept")
async def accept_endpoint(event_id: str, user_id: str = Depends(get_current_user_id)):
    require_event(event_id)
    return {"data": accept_invitation(event_id, user_id).to_dict()}


@router.put("/{member_id}/roles")
async def assign_roles_endpoint(
    event_id: str,
    member_id: str,
    request: RolesRequest,
    user_id: str = Depends(get_current_user_id),
):
    event = require_event(event_id)
    require_permission(user_id, event, "collaborators.edit_roles")
    return {"data": assign_roles(event_id, member_id, request.roles).to_dict()}


@router.put("/{member_id}/custom-role")
async def custom_role_endpoint(
    event_id: str,
    member_id: str,
    request: CustomRoleRequest,
    user_id: str = Depends(get_current_user_id),
):
    event = require_event(event_id)
    require_permission(user_id, event, "collaborators.edit_roles")
    if request.custom_role_id:
        assert_can(event.user_id, "roles_permissions.enabled", event)
    return {"data": set_custom_role(event_id, member_id, request.custom_role_id).to_dict()}


@router.delete("/{member_id}")
async def remove_endpoint(event_id: str, member_id: str, user_id: str = Depends(get_current_user_id)):
    event = require_event(event_id)
    if member_id != user_id:
        require_permission(user_id, event, "collaborators.remove")
    remove_collaborator(event_id, member_id)
    return {"data": {"removed": member_id}}
