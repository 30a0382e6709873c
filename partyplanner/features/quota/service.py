"""
partyplanner/features/quota/service.py

Event creation quota service.

Handles:
- Quota read: plan base + unexpired top-ups - creations used
- Atomic consumption (single guarded UPDATE, no read-modify-write)
- Advisory warning thresholds (80 / 90 / 100 percent)
- Top-up purchases

Reads are never cached: top-ups and usage are evaluated at call time.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional
import logging
from sqlalchemy import select, insert, update, func, or_

from partyplanner.core.config import settings
from partyplanner.core.database import get_db_session, subscriptions, top_ups
from partyplanner.core.errors import ValidationError
from partyplanner.features.entitlements.service import (
    _active_subscription,
    _resolve_live,
    default_entitlements,
)
from partyplanner.features.plans.service import _get_plan
from partyplanner.models.entitlement import EVENT_CREATIONS, Decision, DenialReason
from partyplanner.models.limit import Limit
from partyplanner.models.quota import CreationsQuota, QuotaWarning
from partyplanner.models.subscription import Subscription, TopUp


logger = logging.getLogger(__name__)

# Base credits when a live subscription points at a deleted plan row
MISSING_PLAN_CREATIONS = 1

_NO_QUOTA = CreationsQuota(
    base=Limit.finite(0),
    topup=0,
    total=Limit.finite(0),
    used=0,
    remaining=Limit.finite(0),
    percent_used=100,
)


def _normalize_now(now: Optional[Any]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _warn_thresholds() -> List[int]:
    values = []
    for part in (settings.QUOTA_WARN_THRESHOLDS or "").split(","):
        part = part.strip()
        if part:
            values.append(int(part))
    return sorted(values, reverse=True)


def _topup_credits(session, user_id: str, sub: Subscription, now: datetime) -> int:
    """Credits bound to the active subscription or unbound, and not expired."""
    total = session.execute(
        select(func.coalesce(func.sum(top_ups.c.credits), 0))
        .where(top_ups.c.user_id == user_id)
        .where(or_(top_ups.c.subscription_id == sub.id, top_ups.c.subscription_id.is_(None)))
        .where(or_(top_ups.c.expires_at.is_(None), top_ups.c.expires_at > now))
    ).scalar()
    return int(total or 0)


def _quota_for(session, user_id: str, sub: Optional[Subscription], now: datetime) -> CreationsQuota:
    if sub is None:
        return _NO_QUOTA

    if _get_plan(session, sub.plan_id) is None:
        base = Limit.finite(MISSING_PLAN_CREATIONS)
    else:
        base = _resolve_live(session, user_id, default_entitlements(), now).limit(EVENT_CREATIONS)
    topup = _topup_credits(session, user_id, sub, now)
    used = sub.creations_used

    if base.is_unlimited:
        return CreationsQuota(
            base=base,
            topup=topup,
            total=Limit.unlimited(),
            used=used,
            remaining=Limit.unlimited(),
            percent_used=0,
        )

    total = base.plus(topup)
    return CreationsQuota(
        base=base,
        topup=topup,
        total=total,
        used=used,
        remaining=total.remaining(used),
        percent_used=total.percent_used(used),
    )


def _get_creations_quota(session, user_id: str, now: datetime) -> CreationsQuota:
    return _quota_for(session, user_id, _active_subscription(session, user_id, now), now)


def get_creations_quota(user_id: str, now: Optional[Any] = None) -> CreationsQuota:
    """
    Event creation quota for the current billing period.

    No subscription: nothing to create (total 0, percent 100).
    Unlimited base: total and remaining unlimited, percent 0.
    """
    with get_db_session() as session:
        return _get_creations_quota(session, user_id, _normalize_now(now))


def can_create_event(user_id: str, now: Optional[Any] = None) -> bool:
    return get_creations_quota(user_id, now=now).can_create


def _consume_creation(session, user_id: str, now: datetime) -> bool:
    sub = _active_subscription(session, user_id, now)
    quota = _quota_for(session, user_id, sub, now)
    if not quota.can_create:
        return False

    stmt = (
        update(subscriptions)
        .where(subscriptions.c.id == sub.id)
        .values(creations_used=subscriptions.c.creations_used + 1, updated_at=now)
    )
    if not quota.total.is_unlimited:
        # The increment itself is the serialization point
        stmt = stmt.where(subscriptions.c.creations_used < quota.total.amount)
    result = session.execute(stmt)
    if result.rowcount != 1:
        logger.warning(
            "[quota] consume rejected",
            extra={"user_id": user_id, "subscription_id": sub.id, "total": quota.total.to_raw()},
        )
        return False

    logger.info(
        "[quota] creation consumed",
        extra={"user_id": user_id, "subscription_id": sub.id, "used": quota.used + 1},
    )
    return True


def consume_creation(user_id: str, now: Optional[Any] = None) -> bool:
    """
    Use one event creation credit.

    Returns False when the quota is exhausted or a concurrent request took
    the last credit first.
    """
    with get_db_session() as session:
        return _consume_creation(session, user_id, _normalize_now(now))


def get_quota_percentage(user_id: str, now: Optional[Any] = None) -> int:
    return get_creations_quota(user_id, now=now).percent_used


def warning_for(quota: CreationsQuota) -> Optional[QuotaWarning]:
    if quota.unlimited:
        return None
    percent = quota.percent_used
    if percent >= 100:
        return QuotaWarning.QUOTA_REACHED
    for threshold in _warn_thresholds():
        if threshold >= 100:
            continue
        if percent >= threshold:
            try:
                return QuotaWarning(f"quota_{threshold}")
            except ValueError:
                logger.warning("[quota] unknown warning threshold", extra={"threshold": threshold})
                return None
    return None


def should_warn_about_quota(user_id: str, now: Optional[Any] = None) -> Optional[QuotaWarning]:
    """Advisory only: never blocks below 100 percent."""
    return warning_for(get_creations_quota(user_id, now=now))


def check_event_creation(user_id: str, now: Optional[Any] = None) -> Decision:
    quota = get_creations_quota(user_id, now=now)
    if quota.can_create:
        return Decision.allow(quota=quota.to_dict())
    return Decision.deny(
        DenialReason.QUOTA,
        "Event creation quota reached for this billing period",
        quota=quota.to_dict(),
    )


def add_top_up(
    user_id: str,
    credits: int,
    price: int = 0,
    now: Optional[Any] = None,
) -> TopUp:
    """
    Record purchased creation credits.

    With an active subscription the credits are bound to it and expire with
    it. Without one they are stored unbound and without expiry, and count
    toward whichever subscription becomes active next.

    Raises:
        ValidationError: credits <= 0
    """
    if credits <= 0:
        raise ValidationError("Top-up credits must be positive", field="credits")
    normalized_now = _normalize_now(now)

    with get_db_session() as session:
        sub = _active_subscription(session, user_id, normalized_now)
        subscription_id = sub.id if sub else None
        expires_at = sub.expires_at if sub else None
        result = session.execute(
            insert(top_ups).values(
                user_id=user_id,
                subscription_id=subscription_id,
                credits=credits,
                price=price,
                purchased_at=normalized_now,
                expires_at=expires_at,
            )
        )
        topup_id = result.inserted_primary_key[0]

    logger.info(
        "[quota] top-up added",
        extra={"user_id": user_id, "subscription_id": subscription_id, "credits": credits},
    )
    return TopUp(
        id=topup_id,
        user_id=user_id,
        subscription_id=subscription_id,
        credits=credits,
        price=price,
        purchased_at=normalized_now,
        expires_at=expires_at,
    )
