"""
partyplanner/api/permissions.py
Permissions API: catalog, effective permissions, custom role CRUD.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from partyplanner.core.auth import get_current_user_id
from partyplanner.core.errors import NotFoundError
from partyplanner.features.entitlements.service import assert_can
from partyplanner.features.events.service import require_event
from partyplanner.features.permissions.custom_roles import (
    create_role,
    delete_role,
    get_role,
    list_roles_for_event,
    update_role,
)
from partyplanner.features.permissions.service import (
    get_user_permissions,
    permissions_grouped_by_module,
    require_permission,
    user_can,
)

router = APIRouter(tags=["permissions"])

ROLES_FEATURE = "roles_permissions.enabled"


class RoleRequest(BaseModel):
    name: str
    permissions: List[str]
    description: Optional[str] = None
    color: str = "gray"


class RoleUpdateRequest(BaseModel):
    name: Optional[str] = None
    permissions: Optional[List[str]] = None
    description: Optional[str] = None
    color: Optional[str] = None


def _manageable_event(event_id: str, user_id: str):
    event = require_event(event_id)
    require_permission(user_id, event, "collaborators.edit_roles")
    assert_can(event.user_id, ROLES_FEATURE, event)
    return event


def _event_role(event_id: str, role_id: str):
    role = get_role(role_id)
    if role is None or role.event_id != event_id:
        raise NotFoundError(f"Role {role_id} not found", details={"role_id": role_id})
    return role


@router.get("/api/permissions")
async def list_permissions_endpoint(module: Optional[str] = Query(None)):
    return {"data": permissions_grouped_by_module(module)}


@router.get("/api/events/{event_id}/permissions/me")
async def my_permissions_endpoint(event_id: str, user_id: str = Depends(get_current_user_id)):
    event = require_event(event_id)
    perms = sorted(get_user_permissions(user_id, event))
    return {"data": {"event_id": event_id, "is_owner": event.user_id == user_id, "permissions": perms}}


@router.get("/api/events/{event_id}/permissions/check")
async def check_permission_endpoint(
    event_id: str,
    permission: str = Query(...),
    user_id: str = Depends(get_current_user_id),
):
    event = require_event(event_id)
    allowed = user_can(user_id, event, permission)
    payload = {"permission": permission, "allowed": allowed}
    if not allowed:
        payload["reason"] = "permission"
    return {"data": payload}


@router.get("/api/events/{event_id}/roles")
async def list_roles_endpoint(event_id: str, user_id: str = Depends(get_current_user_id)):
    event = require_event(event_id)
    require_permission(user_id, event, "collaborators.view")
    return {"data": list_roles_for_event(event_id)}


@router.post("/api/events/{event_id}/roles")
async def create_role_endpoint(event_id: str, request: RoleRequest, user_id: str = Depends(get_current_user_id)):
    _manageable_event(event_id, user_id)
    role = create_role(
        event_id,
        user_id,
        request.name,
        request.permissions,
        description=request.description,
        color=request.color,
    )
    return {"data": role.to_dict()}


@router.patch("/api/events/{event_id}/roles/{role_id}")
async def update_role_endpoint(
    event_id: str,
    role_id: str,
    request: RoleUpdateRequest,
    user_id: str = Depends(get_current_user_id),
):
    _manageable_event(event_id, user_id)
    _event_role(event_id, role_id)
    role = update_role(role_id, **request.model_dump(exclude_none=True))
    return {"data": role.to_dict()}


@router.delete("/api/events/{event_id}/roles/{role_id}")
async def delete_role_endpoint(event_id: str, role_id: str, user_id: str = Depends(get_current_user_id)):
    _manageable_event(event_id, user_id)
    _event_role(event_id, role_id)
    delete_role(role_id)
    return {"data": {"deleted": role_id}}
