"""
partyplanner/features/events/service.py

Event creation with frozen entitlements.

Handles:
- Event creation: quota check, snapshot capture, insert and credit
  consumption in one transaction
- Duplication (snapshot copied unless overridden)
- Effective per-event limits with remaining capacity
- Backfill of legacy events created before snapshots existed
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging
from sqlalchemy import select, insert, update, or_

from partyplanner.core.database import get_db_session, as_utc, events
from partyplanner.core.errors import NotFoundError, PermissionError, QuotaExceededError, ValidationError
from partyplanner.core.logging import log_event
from partyplanner.features.entitlements.service import (
    _resolve_live,
    _snapshot_for_new_event,
    default_entitlements,
)
from partyplanner.features.quota.service import _consume_creation, _get_creations_quota
from partyplanner.models.entitlement import (
    COLLABORATORS_PER_EVENT,
    GUESTS_PER_EVENT,
    PER_EVENT_LIMIT_KEYS,
    PHOTOS_PER_EVENT,
)
from partyplanner.models.event import Event, EventSnapshot
from partyplanner.models.limit import Limit


logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = (
    "max_guests_allowed",
    "max_collaborators_allowed",
    "max_photos_allowed",
    "features_enabled",
)


def _normalize_now(now: Optional[Any]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _row_to_event(row) -> Event:
    return Event(
        event_id=row.event_id,
        user_id=row.user_id,
        title=row.title,
        max_guests_allowed=row.max_guests_allowed,
        max_collaborators_allowed=row.max_collaborators_allowed,
        max_photos_allowed=row.max_photos_allowed,
        features_enabled=dict(row.features_enabled) if row.features_enabled is not None else None,
        created_at=as_utc(row.created_at),
    )


def _get_event(session, event_id: str) -> Optional[Event]:
    row = session.execute(select(events).where(events.c.event_id == event_id)).first()
    return _row_to_event(row) if row else None


def get_event(event_id: str) -> Optional[Event]:
    with get_db_session() as session:
        return _get_event(session, event_id)


def require_event(event_id: str) -> Event:
    event = get_event(event_id)
    if event is None:
        raise NotFoundError(f"Event {event_id} not found", details={"event_id": event_id})
    return event


def list_events(user_id: str) -> List[Event]:
    with get_db_session() as session:
        rows = session.execute(
            select(events).where(events.c.user_id == user_id).order_by(events.c.created_at.desc())
        ).fetchall()
        return [_row_to_event(row) for row in rows]


def _clean_title(title: Optional[str]) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Event title is required", field="title")
    return cleaned


def _apply_overrides(snapshot: EventSnapshot, overrides: Optional[Dict[str, Any]]) -> EventSnapshot:
    if not overrides:
        return snapshot
    unknown = set(overrides) - set(SNAPSHOT_FIELDS)
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(f"{field} cannot be overridden", field=field)

    values = snapshot.model_dump()
    for field, value in overrides.items():
        if field == "features_enabled":
            values[field] = {k: True for k, v in dict(value or {}).items() if v}
        else:
            try:
                values[field] = Limit.from_raw(value).to_raw()
            except (TypeError, ValueError):
                raise ValidationError(f"{field} must be a non-negative int or -1", field=field) from None
    return EventSnapshot(**values)


def _insert_event(session, user_id: str, title: str, snapshot: EventSnapshot, now: datetime) -> str:
    event_id = str(uuid4())
    session.execute(
        insert(events).values(
            event_id=event_id,
            user_id=user_id,
            title=title,
            max_guests_allowed=snapshot.max_guests_allowed,
            max_collaborators_allowed=snapshot.max_collaborators_allowed,
            max_photos_allowed=snapshot.max_photos_allowed,
            features_enabled=dict(snapshot.features_enabled),
            created_at=now,
        )
    )
    return event_id


def _create_with_snapshot(
    user_id: str,
    title: str,
    snapshot_source: Optional[EventSnapshot],
    overrides: Optional[Dict[str, Any]],
    now: datetime,
) -> Event:
    with get_db_session() as session:
        quota = _get_creations_quota(session, user_id, now)
        if not quota.can_create:
            raise QuotaExceededError(
                "Event creation quota reached for this billing period",
                details={"quota": quota.to_dict()},
            )

        snapshot = snapshot_source or _snapshot_for_new_event(session, user_id, default_entitlements(), now)
        snapshot = _apply_overrides(snapshot, overrides)
        event_id = _insert_event(session, user_id, title, snapshot, now)

        if not _consume_creation(session, user_id, now):
            # Another request took the last credit; the insert rolls back
            raise QuotaExceededError(
                "Event creation quota reached for this billing period",
                details={"quota": _get_creations_quota(session, user_id, now).to_dict()},
            )
        event = _get_event(session, event_id)

    log_event(
        "info",
        "[events] created",
        user_id=user_id,
        event_id=event.event_id,
        extra={"max_guests_allowed": event.max_guests_allowed},
    )
    return event


def create_event(
    user_id: str,
    title: str,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    now: Optional[Any] = None,
) -> Event:
    """
    Create an event and freeze the owner's current entitlements onto it.

    Raises:
        ValidationError: empty title, bad override
        QuotaExceededError: no creation credit left
    """
    return _create_with_snapshot(user_id, _clean_title(title), None, overrides, _normalize_now(now))


def duplicate_event(
    event_id: str,
    user_id: str,
    overrides: Optional[Dict[str, Any]] = None,
    now: Optional[Any] = None,
) -> Event:
    """
    Copy an event. The source snapshot is kept unless overridden; the copy
    still consumes a creation credit.
    """
    source = require_event(event_id)
    if source.user_id != user_id:
        raise PermissionError("Only the owner can duplicate an event", details={"event_id": event_id})

    overrides = dict(overrides or {})
    title = _clean_title(overrides.pop("title", None) or f"{source.title} (copie)")
    snapshot = None
    if source.has_snapshot:
        snapshot = EventSnapshot(
            max_guests_allowed=source.stored_limit(GUESTS_PER_EVENT).to_raw(),
            max_collaborators_allowed=source.stored_limit(COLLABORATORS_PER_EVENT).to_raw(),
            max_photos_allowed=source.stored_limit(PHOTOS_PER_EVENT).to_raw(),
            features_enabled=dict(source.features_enabled),
        )
    event = _create_with_snapshot(user_id, title, snapshot, overrides, _normalize_now(now))
    logger.info("[events] duplicated", extra={"source_event_id": event_id, "event_id": event.event_id})
    return event


def get_event_limits(
    event: Event,
    user_id: str,
    usage: Optional[Dict[str, int]] = None,
    now: Optional[Any] = None,
) -> Dict[str, dict]:
    """
    Effective per-event limits with remaining capacity.

    usage maps limit key -> current count (guests, collaborators, photos).
    """
    usage = usage or {}
    with get_db_session() as session:
        live = _resolve_live(session, user_id, default_entitlements(), _normalize_now(now))

    result = {}
    for key in PER_EVENT_LIMIT_KEYS:
        effective = event.stored_limit(key).most_generous(live.limit(key))
        used = int(usage.get(key, 0))
        result[key] = {
            "stored": event.stored_limit(key).to_raw(),
            "current": live.limit(key).to_raw(),
            "effective": effective.to_raw(),
            "unlimited": effective.is_unlimited,
            "used": used,
            "remaining": effective.remaining(used).to_raw(),
        }
    return result


def backfill_event_snapshots(dry_run: bool = False, now: Optional[Any] = None) -> Dict[str, Any]:
    """
    Fill null snapshot fields of legacy events from the owner's current
    entitlements. Fields already set are never touched.
    """
    normalized_now = _normalize_now(now)
    defaults = default_entitlements()
    scanned = updated = 0
    with get_db_session() as session:
        rows = session.execute(
            select(events).where(or_(*[events.c[field].is_(None) for field in SNAPSHOT_FIELDS]))
        ).fetchall()
        for row in rows:
            scanned += 1
            snapshot = _snapshot_for_new_event(session, row.user_id, defaults, normalized_now).model_dump()
            values = {field: snapshot[field] for field in SNAPSHOT_FIELDS if getattr(row, field) is None}
            if not values:
                continue
            updated += 1
            if dry_run:
                logger.info("[events] backfill (dry run)", extra={"event_id": row.event_id, "fields": sorted(values)})
                continue
            session.execute(update(events).where(events.c.event_id == row.event_id).values(**values))

    logger.info(
        "[events] backfill complete",
        extra={"scanned": scanned, "updated": updated, "dry_run": dry_run},
    )
    return {"scanned": scanned, "updated": updated, "dry_run": dry_run}
