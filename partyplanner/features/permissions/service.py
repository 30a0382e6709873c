"""
partyplanner/features/permissions/service.py

Collaborator permission resolution.

Handles:
- Permission catalog ("<module>.<action>") and its seeding
- Fixed system role -> permission table (legacy editor/viewer aliases)
- Effective permissions for a user on an event

Resolution order:
1. Event owner: every permission, no lookup
2. No collaborator row, or invitation not accepted: nothing
3. custom_role_id set: that custom role's permissions only
4. Otherwise the union of the assigned system roles
"""

from typing import Dict, FrozenSet, Iterable, List, Optional, Union
import logging
from sqlalchemy import select, insert

from partyplanner.core.database import (
    get_db_session,
    permissions as permissions_table,
    custom_role_permissions,
)
from partyplanner.core.errors import PermissionError
from partyplanner.features.collaborators.service import _get_collaborator
from partyplanner.models.event import Event
from partyplanner.models.role import CustomRole, SystemRole


logger = logging.getLogger(__name__)

# module -> actions
PERMISSION_CATALOG: Dict[str, tuple] = {
    "events": ("view", "edit"),
    "guests": ("view", "create", "edit", "delete", "import", "export", "send_invitations", "checkin"),
    "tasks": ("view", "create", "edit", "delete", "assign", "complete"),
    "budget": ("view", "create", "edit", "delete", "export"),
    "photos": ("view", "upload", "delete", "set_featured"),
    "collaborators": ("view", "invite", "edit_roles", "remove"),
}

MODULE_LABELS = {
    "events": "Événement",
    "guests": "Invités",
    "tasks": "Tâches",
    "budget": "Budget",
    "photos": "Photos",
    "collaborators": "Collaborateurs",
}

ALL_PERMISSIONS: FrozenSet[str] = frozenset(
    f"{module}.{action}" for module, actions in PERMISSION_CATALOG.items() for action in actions
)


def _module(name: str) -> FrozenSet[str]:
    return frozenset(p for p in ALL_PERMISSIONS if p.startswith(f"{name}."))


_READ_ONLY = frozenset(f"{module}.view" for module in PERMISSION_CATALOG)

SYSTEM_ROLE_PERMISSIONS: Dict[SystemRole, FrozenSet[str]] = {
    SystemRole.OWNER: ALL_PERMISSIONS,
    SystemRole.COORDINATOR: (
        frozenset({"events.view", "events.edit"})
        | _module("guests")
        | _module("tasks")
        | _module("budget")
        | _module("photos")
        | _module("collaborators")
    ),
    SystemRole.GUEST_MANAGER: _module("guests"),
    SystemRole.PLANNER: frozenset({"events.view", "events.edit"}) | _module("tasks"),
    SystemRole.ACCOUNTANT: _module("budget"),
    SystemRole.PHOTOGRAPHER: _module("photos"),
    SystemRole.SUPERVISOR: _READ_ONLY,
    SystemRole.REPORTER: _READ_ONLY | frozenset({"guests.export", "budget.export"}),
}


def permissions_for(role: Union[SystemRole, CustomRole]) -> FrozenSet[str]:
    """Permission set of a single role. Legacy system roles use their alias."""
    if isinstance(role, CustomRole):
        return frozenset(role.permissions)
    return SYSTEM_ROLE_PERMISSIONS[SystemRole(role).canonical]


def system_role_can(role: SystemRole, permission: str) -> bool:
    return permission in permissions_for(role)


def system_role_can_in_module(role: SystemRole, module: str) -> bool:
    prefix = f"{module}."
    return any(p.startswith(prefix) for p in permissions_for(role))


def union_of(roles: Iterable[Union[SystemRole, CustomRole]]) -> FrozenSet[str]:
    result: FrozenSet[str] = frozenset()
    for role in roles:
        result = result | permissions_for(role)
    return result


def _custom_role_permissions(session, role_id: str) -> FrozenSet[str]:
    rows = session.execute(
        select(custom_role_permissions.c.permission_name)
        .where(custom_role_permissions.c.role_id == role_id)
    ).fetchall()
    return frozenset(row.permission_name for row in rows)


def _get_user_permissions(session, user_id: str, event: Event) -> FrozenSet[str]:
    if event.user_id == user_id:
        return ALL_PERMISSIONS

    collaborator = _get_collaborator(session, event.event_id, user_id)
    if collaborator is None or not collaborator.is_accepted:
        return frozenset()

    if collaborator.custom_role_id:
        return _custom_role_permissions(session, collaborator.custom_role_id)

    return union_of(collaborator.roles)


def get_user_permissions(user_id: str, event: Event) -> FrozenSet[str]:
    """Effective permission set of a user on an event."""
    with get_db_session() as session:
        return _get_user_permissions(session, user_id, event)


def user_can(user_id: str, event: Event, permission: str) -> bool:
    allowed = permission in get_user_permissions(user_id, event)
    if not allowed:
        logger.info(
            "[permissions] DENIED",
            extra={"user_id": user_id, "event_id": event.event_id, "permission": permission},
        )
    return allowed


def user_can_in_module(user_id: str, event: Event, module: str) -> bool:
    """True when any `<module>.*` permission is held."""
    prefix = f"{module}."
    return any(p.startswith(prefix) for p in get_user_permissions(user_id, event))


def require_permission(user_id: str, event: Event, permission: str) -> None:
    """Raise PermissionError unless the user holds the permission on the event."""
    if not user_can(user_id, event, permission):
        raise PermissionError(
            f"Missing permission {permission}",
            details={"event_id": event.event_id, "permission": permission},
        )


def is_known_permission(name: str) -> bool:
    return name in ALL_PERMISSIONS


def _display_name(module: str, action: str) -> str:
    return f"{MODULE_LABELS.get(module, module)}: {action.replace('_', ' ')}"


def seed_permissions() -> int:
    """Insert missing catalog rows (idempotent). Returns the number inserted."""
    inserted = 0
    with get_db_session() as session:
        existing = {
            row.name for row in session.execute(select(permissions_table.c.name)).fetchall()
        }
        for module, actions in PERMISSION_CATALOG.items():
            for action in actions:
                name = f"{module}.{action}"
                if name in existing:
                    continue
                session.execute(
                    insert(permissions_table).values(
                        name=name,
                        module=module,
                        action=action,
                        display_name=_display_name(module, action),
                    )
                )
                inserted += 1
    if inserted:
        logger.info("[permissions] seeded", extra={"inserted": inserted})
    return inserted


def permissions_grouped_by_module(module: Optional[str] = None) -> Dict[str, List[dict]]:
    """Catalog rows grouped by module, for role editors."""
    with get_db_session() as session:
        query = select(permissions_table).order_by(permissions_table.c.module, permissions_table.c.name)
        if module:
            query = query.where(permissions_table.c.module == module)
        rows = session.execute(query).fetchall()

    grouped: Dict[str, List[dict]] = {}
    for row in rows:
        grouped.setdefault(row.module, []).append(
            {"name": row.name, "action": row.action, "display_name": row.display_name}
        )
    return grouped
