"""
partyplanner/features/permissions/custom_roles.py

Per-event custom roles.

A collaborator holding a custom role gets exactly that role's permissions;
system roles assigned alongside it are not consulted.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional
from uuid import uuid4
import logging
from sqlalchemy import select, insert, update, delete, func

from partyplanner.core.database import (
    get_db_session,
    as_utc,
    collaborators,
    custom_roles,
    custom_role_permissions,
)
from partyplanner.core.errors import ConflictError, NotFoundError, ValidationError
from partyplanner.features.permissions.service import (
    _custom_role_permissions,
    is_known_permission,
    permissions_for,
)
from partyplanner.models.role import ROLE_LABELS, CustomRole, SystemRole


logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
COLORS = ("gray", "red", "orange", "yellow", "green", "blue", "indigo", "purple", "pink")


def _row_to_role(session, row) -> CustomRole:
    return CustomRole(
        role_id=row.role_id,
        event_id=row.event_id,
        name=row.name,
        description=row.description,
        color=row.color,
        is_system=bool(row.is_system),
        created_by=row.created_by,
        created_at=as_utc(row.created_at),
        permissions=_custom_role_permissions(session, row.role_id),
    )


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Role name is required", field="name")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError(f"Role name must be at most {MAX_NAME_LENGTH} characters", field="name")
    return cleaned


def _clean_permissions(permissions: Optional[Iterable[str]]) -> List[str]:
    names = sorted(set(permissions or ()))
    if not names:
        raise ValidationError("At least one permission is required", field="permissions")
    unknown = [p for p in names if not is_known_permission(p)]
    if unknown:
        raise ValidationError(
            f"Unknown permissions: {', '.join(unknown)}",
            field="permissions",
            details={"unknown": unknown},
        )
    return names


def _clean_color(color: Optional[str]) -> str:
    if color not in COLORS:
        raise ValidationError(f"Color must be one of {', '.join(COLORS)}", field="color")
    return color


def _name_taken(session, event_id: str, name: str, exclude_role_id: Optional[str] = None) -> bool:
    query = (
        select(func.count())
        .select_from(custom_roles)
        .where(custom_roles.c.event_id == event_id)
        .where(func.lower(custom_roles.c.name) == name.lower())
    )
    if exclude_role_id:
        query = query.where(custom_roles.c.role_id != exclude_role_id)
    return bool(session.execute(query).scalar())


def _replace_permissions(session, role_id: str, names: List[str]) -> None:
    session.execute(delete(custom_role_permissions).where(custom_role_permissions.c.role_id == role_id))
    for name in names:
        session.execute(insert(custom_role_permissions).values(role_id=role_id, permission_name=name))


def create_role(
    event_id: str,
    created_by: Optional[str],
    name: str,
    permissions: Iterable[str],
    description: Optional[str] = None,
    color: str = "gray",
) -> CustomRole:
    """
    Create a custom role on an event.

    Raises:
        ValidationError: empty or duplicate name, empty or unknown permissions
    """
    cleaned = _clean_name(name)
    names = _clean_permissions(permissions)
    color = _clean_color(color)
    now = datetime.now(timezone.utc)
    role_id = str(uuid4())

    with get_db_session() as session:
        if _name_taken(session, event_id, cleaned):
            raise ValidationError(f"A role named {cleaned} already exists for this event", field="name")
        session.execute(
            insert(custom_roles).values(
                role_id=role_id,
                event_id=event_id,
                name=cleaned,
                description=description,
                color=color,
                is_system=False,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
        )
        _replace_permissions(session, role_id, names)

    logger.info(
        "[roles] created",
        extra={"event_id": event_id, "role_id": role_id, "permissions": len(names)},
    )
    return CustomRole(
        role_id=role_id,
        event_id=event_id,
        name=cleaned,
        permissions=frozenset(names),
        description=description,
        color=color,
        created_by=created_by,
        created_at=now,
    )


def _get_role(session, role_id: str) -> Optional[CustomRole]:
    row = session.execute(select(custom_roles).where(custom_roles.c.role_id == role_id)).first()
    return _row_to_role(session, row) if row else None


def get_role(role_id: str) -> Optional[CustomRole]:
    with get_db_session() as session:
        return _get_role(session, role_id)


def update_role(
    role_id: str,
    *,
    name: Optional[str] = None,
    permissions: Optional[Iterable[str]] = None,
    description: Optional[str] = None,
    color: Optional[str] = None,
) -> CustomRole:
    """Update the given fields. System roles are read-only."""
    with get_db_session() as session:
        role = _get_role(session, role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found", details={"role_id": role_id})
        if role.is_system:
            raise ConflictError("System roles cannot be modified", details={"role_id": role_id})

        values = {}
        if name is not None:
            cleaned = _clean_name(name)
            if _name_taken(session, role.event_id, cleaned, exclude_role_id=role_id):
                raise ValidationError(f"A role named {cleaned} already exists for this event", field="name")
            values["name"] = cleaned
        if description is not None:
            values["description"] = description
        if color is not None:
            values["color"] = _clean_color(color)
        if permissions is not None:
            _replace_permissions(session, role_id, _clean_permissions(permissions))

        values["updated_at"] = datetime.now(timezone.utc)
        session.execute(update(custom_roles).where(custom_roles.c.role_id == role_id).values(**values))
        updated = _get_role(session, role_id)

    logger.info("[roles] updated", extra={"role_id": role_id, "fields": sorted(values)})
    return updated


def delete_role(role_id: str) -> None:
    """Delete a custom role no collaborator holds."""
    with get_db_session() as session:
        role = _get_role(session, role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found", details={"role_id": role_id})
        if role.is_system:
            raise ConflictError("System roles cannot be deleted", details={"role_id": role_id})
        in_use = session.execute(
            select(func.count())
            .select_from(collaborators)
            .where(collaborators.c.custom_role_id == role_id)
        ).scalar()
        if in_use:
            raise ConflictError(
                f"Role {role.name} is assigned to {in_use} collaborator(s)",
                details={"role_id": role_id, "collaborators": in_use},
            )
        session.execute(delete(custom_role_permissions).where(custom_role_permissions.c.role_id == role_id))
        session.execute(delete(custom_roles).where(custom_roles.c.role_id == role_id))

    logger.info("[roles] deleted", extra={"role_id": role_id, "event_id": role.event_id})


def list_roles_for_event(event_id: str) -> List[dict]:
    """Assignable system roles followed by the event's custom roles."""
    result = [
        {
            "role": role.value,
            "name": ROLE_LABELS[role],
            "is_system": True,
            "permissions": sorted(permissions_for(role)),
        }
        for role in SystemRole.assignable()
    ]
    with get_db_session() as session:
        rows = session.execute(
            select(custom_roles)
            .where(custom_roles.c.event_id == event_id)
            .order_by(custom_roles.c.name)
        ).fetchall()
        for row in rows:
            result.append(_row_to_role(session, row).to_dict())
    return result
