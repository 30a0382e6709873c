"""
partyplanner/features/plans/service.py

Plan catalog service.

Handles:
- Plan seeding (essai-gratuit, pro, agence)
- Plan lookup and listing for the pricing page
- Trial plan selection (one-time-use plans are offered once per user)
- Guarded updates: a plan referenced by a subscription is never mutated
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
from sqlalchemy import select, insert, update, delete, func

from partyplanner.core.config import settings
from partyplanner.core.database import get_db_session, plans, subscriptions
from partyplanner.core.errors import ConflictError, NotFoundError, ValidationError
from partyplanner.models.entitlement import (
    COLLABORATORS_PER_EVENT,
    EVENT_CREATIONS,
    FEATURE_KEYS,
    GUESTS_PER_EVENT,
    PHOTOS_PER_EVENT,
)
from partyplanner.models.plan import Plan
from partyplanner.models.subscription import CLOSED_STATUSES


logger = logging.getLogger(__name__)

TRIAL_PLAN_ID = "essai-gratuit"

_ALL_FEATURES = {key: True for key in FEATURE_KEYS}


def _features(*enabled: str) -> Dict[str, bool]:
    return {key: key in enabled for key in FEATURE_KEYS}


# Default plan configurations
DEFAULT_PLANS: Dict[str, Dict[str, Any]] = {
    TRIAL_PLAN_ID: {
        "name": "Essai Gratuit",
        "description": "14 jours pour découvrir la plateforme",
        "price": 0,
        "duration_days": 14,
        "is_trial": True,
        "is_one_time_use": True,
        "sort_order": 0,
        "limits": {
            EVENT_CREATIONS: 1,
            GUESTS_PER_EVENT: 100,
            COLLABORATORS_PER_EVENT: 1,
            PHOTOS_PER_EVENT: 10,
        },
        "features": _features(
            "budget.enabled",
            "tasks.enabled",
            "guests.manage",
            "collaborators.manage",
        ),
    },
    "pro": {
        "name": "PRO",
        "description": "Pour les organisateurs réguliers",
        "price": 10000,
        "duration_days": 30,
        "is_trial": False,
        "is_one_time_use": False,
        "sort_order": 1,
        "limits": {
            EVENT_CREATIONS: 200,
            GUESTS_PER_EVENT: -1,  # unlimited
            COLLABORATORS_PER_EVENT: -1,  # unlimited
            PHOTOS_PER_EVENT: -1,  # unlimited
        },
        "features": _features(
            "budget.enabled",
            "planning.enabled",
            "tasks.enabled",
            "guests.manage",
            "guests.import",
            "guests.export",
            "collaborators.manage",
            "roles_permissions.enabled",
            "exports.pdf",
            "exports.excel",
            "exports.csv",
            "history.enabled",
            "reporting.enabled",
            "support.whatsapp_priority",
        ),
    },
    "agence": {
        "name": "AGENCE",
        "description": "Pour les agences et les professionnels",
        "price": 25000,
        "duration_days": 30,
        "is_trial": False,
        "is_one_time_use": False,
        "sort_order": 2,
        "limits": {
            EVENT_CREATIONS: 500,
            GUESTS_PER_EVENT: -1,
            COLLABORATORS_PER_EVENT: -1,
            PHOTOS_PER_EVENT: -1,
        },
        "features": dict(_ALL_FEATURES),
    },
}

# Columns update_plan may touch
_MUTABLE_FIELDS = {
    "name", "description", "price", "duration_days", "is_trial",
    "is_one_time_use", "is_active", "sort_order", "limits", "features",
}
# Changing these would alter what existing subscribers are entitled to
_ENTITLEMENT_FIELDS = {"price", "duration_days", "limits", "features"}


def _row_to_plan(row) -> Plan:
    return Plan(
        plan_id=row.plan_id,
        name=row.name,
        description=row.description,
        price=row.price,
        duration_days=row.duration_days,
        is_trial=bool(row.is_trial),
        is_one_time_use=bool(row.is_one_time_use),
        is_active=bool(row.is_active),
        sort_order=row.sort_order,
        limits=dict(row.limits or {}),
        features=dict(row.features or {}),
        created_at=row.created_at,
    )


def seed_plans() -> None:
    """
    Seed default plans into database (idempotent).

    Existing rows are left untouched. Safe to call multiple times.
    """
    now = datetime.now(timezone.utc)

    with get_db_session() as session:
        for plan_id, config in DEFAULT_PLANS.items():
            existing = session.execute(
                select(plans.c.plan_id).where(plans.c.plan_id == plan_id)
            ).first()
            if existing:
                continue
            session.execute(
                insert(plans).values(
                    plan_id=plan_id,
                    name=config["name"],
                    description=config.get("description"),
                    price=config["price"],
                    duration_days=config["duration_days"],
                    is_trial=config["is_trial"],
                    is_one_time_use=config["is_one_time_use"],
                    is_active=True,
                    sort_order=config["sort_order"],
                    limits=dict(config["limits"]),
                    features=dict(config["features"]),
                    created_at=now,
                )
            )
            logger.info("[plans] seeded", extra={"plan_id": plan_id})


def _get_plan(session, plan_id: str) -> Optional[Plan]:
    row = session.execute(select(plans).where(plans.c.plan_id == plan_id)).first()
    return _row_to_plan(row) if row else None


def get_plan(plan_id: str) -> Optional[Plan]:
    """Get plan by ID."""
    with get_db_session() as session:
        return _get_plan(session, plan_id)


def require_plan(session, plan_id: str) -> Plan:
    """Plan lookup for write paths. An unknown plan is a programmer error."""
    plan = _get_plan(session, plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found", details={"plan_id": plan_id})
    return plan


def _has_user_used_plan(session, user_id: str, plan_id: str) -> bool:
    count = session.execute(
        select(func.count())
        .select_from(subscriptions)
        .where(subscriptions.c.user_id == user_id)
        .where(subscriptions.c.plan_id == plan_id)
    ).scalar()
    return bool(count)


def has_user_used_plan(user_id: str, plan_id: str) -> bool:
    """True when any subscription (cancelled and expired included) references the plan."""
    with get_db_session() as session:
        return _has_user_used_plan(session, user_id, plan_id)


def list_active_plans(user_id: Optional[str] = None) -> List[Plan]:
    """
    Active plans ordered by sort_order.

    When user_id is given, one-time-use plans the user already consumed are
    left out.
    """
    with get_db_session() as session:
        rows = session.execute(
            select(plans)
            .where(plans.c.is_active == True)  # noqa: E712
            .order_by(plans.c.sort_order, plans.c.plan_id)
        ).fetchall()
        result = []
        for row in rows:
            plan = _row_to_plan(row)
            if user_id and plan.is_one_time_use and _has_user_used_plan(session, user_id, plan.plan_id):
                continue
            result.append(plan)
        return result


def _get_available_trial_plan(session, user_id: str) -> Optional[Plan]:
    if settings.TRIAL_PLAN_ID:
        plan = _get_plan(session, settings.TRIAL_PLAN_ID)
        candidates = [plan] if plan and plan.is_active else []
    else:
        rows = session.execute(
            select(plans)
            .where(plans.c.is_active == True)  # noqa: E712
            .where(plans.c.is_trial == True)  # noqa: E712
            .order_by(plans.c.sort_order, plans.c.plan_id)
        ).fetchall()
        candidates = [_row_to_plan(row) for row in rows]

    for plan in candidates:
        if plan.is_one_time_use and _has_user_used_plan(session, user_id, plan.plan_id):
            continue
        return plan
    return None


def get_available_trial_plan(user_id: str) -> Optional[Plan]:
    """Trial plan the user may still start, or None when none is configured or left."""
    with get_db_session() as session:
        return _get_available_trial_plan(session, user_id)


def _is_referenced(session, plan_id: str, *, live_only: bool = False) -> bool:
    query = (
        select(func.count())
        .select_from(subscriptions)
        .where(subscriptions.c.plan_id == plan_id)
    )
    if live_only:
        query = query.where(subscriptions.c.status.notin_(CLOSED_STATUSES))
    return bool(session.execute(query).scalar())


def update_plan(plan_id: str, /, **changes) -> Plan:
    """
    Update a plan's catalog fields.

    Raises:
        NotFoundError: unknown plan
        ValidationError: unknown field
        ConflictError: the change touches limits, features, price or duration
            while a subscription references the plan
    """
    unknown = set(changes) - _MUTABLE_FIELDS
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(f"Field {field} cannot be updated", field=field)

    with get_db_session() as session:
        require_plan(session, plan_id)
        if set(changes) & _ENTITLEMENT_FIELDS and _is_referenced(session, plan_id):
            raise ConflictError(
                f"Plan {plan_id} is referenced by subscriptions; create a new plan instead",
                details={"plan_id": plan_id},
            )
        if changes:
            session.execute(update(plans).where(plans.c.plan_id == plan_id).values(**changes))
        plan = _get_plan(session, plan_id)

    logger.info("[plans] updated", extra={"plan_id": plan_id, "fields": sorted(changes)})
    return plan


def delete_plan(plan_id: str) -> None:
    """
    Delete a plan nobody uses, or deactivate it when only closed
    subscriptions still reference it.
    """
    with get_db_session() as session:
        require_plan(session, plan_id)
        if _is_referenced(session, plan_id, live_only=True):
            raise ConflictError(
                f"Plan {plan_id} has live subscriptions",
                details={"plan_id": plan_id},
            )
        if _is_referenced(session, plan_id):
            session.execute(update(plans).where(plans.c.plan_id == plan_id).values(is_active=False))
            logger.info("[plans] deactivated", extra={"plan_id": plan_id})
            return
        session.execute(delete(plans).where(plans.c.plan_id == plan_id))
    logger.info("[plans] deleted", extra={"plan_id": plan_id})


if __name__ == "__main__":
    seed_plans()
    for p in list_active_plans():
        print(p.plan_id, p.price, p.limits)
