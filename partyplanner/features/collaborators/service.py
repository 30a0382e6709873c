"""
partyplanner/features/collaborators/service.py

Event collaborators.

Handles:
- Invitations, checked against the effective collaborator limit
- Acceptance (pending until accepted_at is set)
- System role assignment and custom role binding
"""

from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional
import logging
from sqlalchemy import select, insert, update, delete, func

from partyplanner.core.database import (
    get_db_session,
    as_utc,
    collaborators,
    collaborator_roles,
    custom_roles,
)
from partyplanner.core.errors import ConflictError, LimitExceededError, NotFoundError, ValidationError
from partyplanner.features.entitlements.service import _get_effective_limit, default_entitlements
from partyplanner.models.collaborator import Collaborator
from partyplanner.models.entitlement import COLLABORATORS_PER_EVENT
from partyplanner.models.event import Event
from partyplanner.models.role import SystemRole


logger = logging.getLogger(__name__)

DEFAULT_ROLES = (SystemRole.SUPERVISOR,)


def _normalize_now(now: Optional[Any]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _roles_of(session, collaborator_id: int) -> tuple:
    rows = session.execute(
        select(collaborator_roles.c.role)
        .where(collaborator_roles.c.collaborator_id == collaborator_id)
        .order_by(collaborator_roles.c.id)
    ).fetchall()
    result = []
    for row in rows:
        try:
            result.append(SystemRole(row.role))
        except ValueError:
            logger.warning(
                "[collaborators] unknown stored role ignored",
                extra={"collaborator_id": collaborator_id, "role": row.role},
            )
    return tuple(result)


def _row_to_collaborator(session, row) -> Collaborator:
    return Collaborator(
        id=row.id,
        event_id=row.event_id,
        user_id=row.user_id,
        roles=_roles_of(session, row.id),
        custom_role_id=row.custom_role_id,
        invited_by=row.invited_by,
        invited_at=as_utc(row.invited_at),
        accepted_at=as_utc(row.accepted_at),
    )


def _get_collaborator(session, event_id: str, user_id: str) -> Optional[Collaborator]:
    row = session.execute(
        select(collaborators)
        .where(collaborators.c.event_id == event_id)
        .where(collaborators.c.user_id == user_id)
    ).first()
    return _row_to_collaborator(session, row) if row else None


def _require_collaborator(session, event_id: str, user_id: str) -> Collaborator:
    collaborator = _get_collaborator(session, event_id, user_id)
    if collaborator is None:
        raise NotFoundError(
            "Collaborator not found",
            details={"event_id": event_id, "user_id": user_id},
        )
    return collaborator


def get_collaborator(event_id: str, user_id: str) -> Optional[Collaborator]:
    with get_db_session() as session:
        return _get_collaborator(session, event_id, user_id)


def list_collaborators(event_id: str) -> List[Collaborator]:
    with get_db_session() as session:
        rows = session.execute(
            select(collaborators)
            .where(collaborators.c.event_id == event_id)
            .order_by(collaborators.c.id)
        ).fetchall()
        return [_row_to_collaborator(session, row) for row in rows]


def _count_collaborators(session, event_id: str) -> int:
    return int(
        session.execute(
            select(func.count()).select_from(collaborators).where(collaborators.c.event_id == event_id)
        ).scalar()
        or 0
    )


def count_collaborators(event_id: str) -> int:
    """Pending invitations count against the limit too."""
    with get_db_session() as session:
        return _count_collaborators(session, event_id)


def _clean_roles(roles: Optional[Iterable[Any]]) -> List[SystemRole]:
    cleaned = []
    for role in roles or ():
        try:
            value = SystemRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role {role}", field="roles") from None
        if value is SystemRole.OWNER:
            raise ValidationError("The owner role cannot be assigned", field="roles")
        if value not in cleaned:
            cleaned.append(value)
    return cleaned


def _check_custom_role(session, event_id: str, role_id: str) -> None:
    row = session.execute(
        select(custom_roles.c.event_id).where(custom_roles.c.role_id == role_id)
    ).first()
    if row is None or row.event_id != event_id:
        raise ValidationError("Custom role does not belong to this event", field="custom_role_id")


def _replace_roles(session, collaborator_id: int, roles: List[SystemRole]) -> None:
    session.execute(delete(collaborator_roles).where(collaborator_roles.c.collaborator_id == collaborator_id))
    for role in roles:
        session.execute(insert(collaborator_roles).values(collaborator_id=collaborator_id, role=role.value))


def invite_collaborator(
    event: Event,
    invited_by: str,
    user_id: str,
    roles: Optional[Iterable[Any]] = None,
    custom_role_id: Optional[str] = None,
    now: Optional[Any] = None,
) -> Collaborator:
    """
    Invite a user onto an event.

    Raises:
        ValidationError: owner invited, unknown role, foreign custom role
        ConflictError: user already invited
        LimitExceededError: effective collaborator limit reached
    """
    if user_id == event.user_id:
        raise ValidationError("The event owner cannot be invited", field="user_id")
    cleaned = _clean_roles(roles) if roles is not None else list(DEFAULT_ROLES)
    if not cleaned and not custom_role_id:
        raise ValidationError("At least one role is required", field="roles")
    normalized_now = _normalize_now(now)

    with get_db_session() as session:
        if _get_collaborator(session, event.event_id, user_id):
            raise ConflictError(
                "User is already a collaborator on this event",
                details={"event_id": event.event_id, "user_id": user_id},
            )
        if custom_role_id:
            _check_custom_role(session, event.event_id, custom_role_id)

        # Limits follow the event owner's entitlements
        effective = _get_effective_limit(
            session, event, event.user_id, COLLABORATORS_PER_EVENT, default_entitlements(), normalized_now
        )
        current = _count_collaborators(session, event.event_id)
        if not effective.allows(current + 1):
            logger.info(
                "[collaborators] LIMIT_REACHED",
                extra={"event_id": event.event_id, "limit": effective.to_raw(), "current": current},
            )
            raise LimitExceededError(
                f"Collaborator limit reached ({effective})",
                details={"limit_key": COLLABORATORS_PER_EVENT, "limit": effective.to_raw(), "current": current},
            )

        result = session.execute(
            insert(collaborators).values(
                event_id=event.event_id,
                user_id=user_id,
                custom_role_id=custom_role_id,
                invited_by=invited_by,
                invited_at=normalized_now,
                accepted_at=None,
            )
        )
        collaborator_id = result.inserted_primary_key[0]
        _replace_roles(session, collaborator_id, cleaned)
        collaborator = _get_collaborator(session, event.event_id, user_id)

    logger.info(
        "[collaborators] invited",
        extra={"event_id": event.event_id, "user_id": user_id, "invited_by": invited_by},
    )
    return collaborator


def accept_invitation(event_id: str, user_id: str, now: Optional[Any] = None) -> Collaborator:
    """Accept a pending invitation. Accepting twice keeps the first timestamp."""
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        collaborator = _require_collaborator(session, event_id, user_id)
        if collaborator.is_accepted:
            return collaborator
        session.execute(
            update(collaborators)
            .where(collaborators.c.id == collaborator.id)
            .values(accepted_at=normalized_now)
        )
        collaborator = _get_collaborator(session, event_id, user_id)

    logger.info("[collaborators] accepted", extra={"event_id": event_id, "user_id": user_id})
    return collaborator


def assign_roles(event_id: str, user_id: str, roles: Iterable[Any]) -> Collaborator:
    """Replace the collaborator's system roles."""
    cleaned = _clean_roles(roles)
    if not cleaned:
        raise ValidationError("At least one role is required", field="roles")
    with get_db_session() as session:
        collaborator = _require_collaborator(session, event_id, user_id)
        _replace_roles(session, collaborator.id, cleaned)
        collaborator = _get_collaborator(session, event_id, user_id)

    logger.info(
        "[collaborators] roles assigned",
        extra={"event_id": event_id, "user_id": user_id, "roles": [r.value for r in cleaned]},
    )
    return collaborator


def set_custom_role(event_id: str, user_id: str, role_id: Optional[str]) -> Collaborator:
    """Bind a custom role (it replaces system roles during resolution). None unbinds."""
    with get_db_session() as session:
        collaborator = _require_collaborator(session, event_id, user_id)
        if role_id:
            _check_custom_role(session, event_id, role_id)
        session.execute(
            update(collaborators)
            .where(collaborators.c.id == collaborator.id)
            .values(custom_role_id=role_id)
        )
        collaborator = _get_collaborator(session, event_id, user_id)

    logger.info(
        "[collaborators] custom role set",
        extra={"event_id": event_id, "user_id": user_id, "custom_role_id": role_id},
    )
    return collaborator


def remove_collaborator(event_id: str, user_id: str) -> None:
    with get_db_session() as session:
        collaborator = _require_collaborator(session, event_id, user_id)
        session.execute(delete(collaborator_roles).where(collaborator_roles.c.collaborator_id == collaborator.id))
        session.execute(delete(collaborators).where(collaborators.c.id == collaborator.id))

    logger.info("[collaborators] removed", extra={"event_id": event_id, "user_id": user_id})
