"""
partyplanner/features/subscriptions/service.py

Subscription lifecycle.

Handles:
- Trial on signup, paid plan purchase, upgrade, cancel, renew
- Expire sweep (idempotent)
- Event guest capacity checks

State machine: trial -> active -> {cancelled, expired}; renew and upgrade
keep a subscription active. At most one non-cancelled account-level
subscription per user: creating one cancels the others in the same
transaction.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional
import logging
from sqlalchemy import select, insert, update, func

from partyplanner.core.database import get_db_session, subscriptions
from partyplanner.core.errors import ConflictError, NotFoundError, ValidationError
from partyplanner.core.logging import log_event
from partyplanner.features.entitlements.service import (
    default_entitlements,
    row_to_subscription,
    _get_effective_limit,
)
from partyplanner.features.plans.service import _get_available_trial_plan, require_plan
from partyplanner.models.entitlement import GUESTS_PER_EVENT
from partyplanner.models.event import Event
from partyplanner.models.limit import Limit
from partyplanner.models.subscription import (
    CLOSED_STATUSES,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
)


logger = logging.getLogger(__name__)


def _normalize_now(now: Optional[Any]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _get_subscription(session, subscription_id: int) -> Optional[Subscription]:
    row = session.execute(select(subscriptions).where(subscriptions.c.id == subscription_id)).first()
    return row_to_subscription(row) if row else None


def _require_subscription(session, subscription_id: int) -> Subscription:
    sub = _get_subscription(session, subscription_id)
    if sub is None:
        raise NotFoundError(
            f"Subscription {subscription_id} not found",
            details={"subscription_id": subscription_id},
        )
    return sub


def get_subscription(subscription_id: int) -> Optional[Subscription]:
    with get_db_session() as session:
        return _get_subscription(session, subscription_id)


def _cancel_other_account_subscriptions(session, user_id: str, now: datetime) -> int:
    result = session.execute(
        update(subscriptions)
        .where(subscriptions.c.user_id == user_id)
        .where(subscriptions.c.event_id.is_(None))
        .where(subscriptions.c.status != SubscriptionStatus.CANCELLED.value)
        .values(status=SubscriptionStatus.CANCELLED.value, updated_at=now)
    )
    return result.rowcount or 0


def _insert_subscription(session, user_id: str, plan, event_id: Optional[str], now: datetime) -> int:
    if plan.is_trial:
        status, payment_status = SubscriptionStatus.TRIAL, PaymentStatus.PAID
    else:
        status, payment_status = SubscriptionStatus.ACTIVE, PaymentStatus.PENDING

    result = session.execute(
        insert(subscriptions).values(
            user_id=user_id,
            event_id=event_id,
            plan_id=plan.plan_id,
            status=status.value,
            payment_status=payment_status.value,
            price=plan.price,
            creations_used=0,
            starts_at=now,
            expires_at=now + timedelta(days=plan.duration_days),
            created_at=now,
            updated_at=now,
        )
    )
    return result.inserted_primary_key[0]


def create_subscription(
    user_id: str,
    plan_id: str,
    event_id: Optional[str] = None,
    now: Optional[Any] = None,
) -> Subscription:
    """
    Start a subscription on a plan.

    Account-level subscriptions (event_id None) cancel every other
    non-cancelled account-level subscription of the user first.
    Trial plans start as trial/paid, other plans as active/pending.

    Raises:
        NotFoundError: unknown plan
    """
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        plan = require_plan(session, plan_id)
        cancelled = 0
        if event_id is None:
            cancelled = _cancel_other_account_subscriptions(session, user_id, normalized_now)
        sub_id = _insert_subscription(session, user_id, plan, event_id, normalized_now)
        sub = _get_subscription(session, sub_id)

    log_event(
        "info",
        "[subscriptions] created",
        user_id=user_id,
        event_id=event_id,
        subscription_id=sub.id,
        extra={"plan_id": plan_id, "status": sub.status.value, "cancelled_previous": cancelled},
    )
    return sub


def create_trial_subscription(user_id: str, now: Optional[Any] = None) -> Optional[Subscription]:
    """
    Start the trial for a new user.

    Returns None (no error) when the user already has an account-level
    subscription, no trial plan is configured, or the trial was consumed.
    """
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        existing = session.execute(
            select(func.count())
            .select_from(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .where(subscriptions.c.event_id.is_(None))
        ).scalar()
        if existing:
            return None

        plan = _get_available_trial_plan(session, user_id)
        if plan is None:
            logger.info("[subscriptions] no trial available", extra={"user_id": user_id})
            return None

        sub_id = _insert_subscription(session, user_id, plan, None, normalized_now)
        sub = _get_subscription(session, sub_id)

    logger.info(
        "[subscriptions] trial started",
        extra={"user_id": user_id, "subscription_id": sub.id, "plan_id": plan.plan_id},
    )
    return sub


def upgrade_to_plan(subscription_id: int, new_plan_id: str, now: Optional[Any] = None) -> Subscription:
    """
    Move a subscription to another plan.

    creations_used is kept. Payment goes back to pending only when the new
    plan costs more.
    """
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        sub = _require_subscription(session, subscription_id)
        if sub.status.value in CLOSED_STATUSES:
            raise ConflictError(
                f"Subscription {subscription_id} is {sub.status.value}",
                details={"subscription_id": subscription_id},
            )
        new_plan = require_plan(session, new_plan_id)
        price_difference = new_plan.price - sub.price
        payment_status = PaymentStatus.PENDING if price_difference > 0 else PaymentStatus.PAID

        session.execute(
            update(subscriptions)
            .where(subscriptions.c.id == subscription_id)
            .values(
                plan_id=new_plan.plan_id,
                price=new_plan.price,
                status=SubscriptionStatus.ACTIVE.value,
                payment_status=payment_status.value,
                expires_at=normalized_now + timedelta(days=new_plan.duration_days),
                updated_at=normalized_now,
            )
        )
        updated = _get_subscription(session, subscription_id)

    logger.info(
        "[subscriptions] upgraded",
        extra={
            "subscription_id": subscription_id,
            "from_plan": sub.plan_id,
            "to_plan": new_plan_id,
            "payment_status": payment_status.value,
        },
    )
    return updated


def cancel_subscription(subscription_id: int, now: Optional[Any] = None) -> Subscription:
    """Cancel a subscription. Cancelling twice is a no-op."""
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        sub = _require_subscription(session, subscription_id)
        if sub.status == SubscriptionStatus.CANCELLED:
            return sub
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.id == subscription_id)
            .values(status=SubscriptionStatus.CANCELLED.value, updated_at=normalized_now)
        )
        updated = _get_subscription(session, subscription_id)

    logger.info("[subscriptions] cancelled", extra={"subscription_id": subscription_id, "user_id": sub.user_id})
    return updated


def renew_subscription(subscription_id: int, now: Optional[Any] = None) -> Subscription:
    """
    Start a new billing period: creations_used back to 0, expires_at
    extended by the plan duration from max(now, expires_at).
    """
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        sub = _require_subscription(session, subscription_id)
        if sub.status == SubscriptionStatus.CANCELLED:
            raise ConflictError(
                f"Subscription {subscription_id} is cancelled",
                details={"subscription_id": subscription_id},
            )
        plan = require_plan(session, sub.plan_id)
        start = max(normalized_now, sub.expires_at) if sub.expires_at else normalized_now
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.id == subscription_id)
            .values(
                status=SubscriptionStatus.ACTIVE.value,
                creations_used=0,
                expires_at=start + timedelta(days=plan.duration_days),
                updated_at=normalized_now,
            )
        )
        updated = _get_subscription(session, subscription_id)

    logger.info(
        "[subscriptions] renewed",
        extra={"subscription_id": subscription_id, "expires_at": updated.expires_at.isoformat()},
    )
    return updated


def mark_paid(subscription_id: int, now: Optional[Any] = None) -> Subscription:
    """Record a confirmed payment."""
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        sub = _require_subscription(session, subscription_id)
        if sub.status.value in CLOSED_STATUSES:
            raise ConflictError(
                f"Subscription {subscription_id} is {sub.status.value}",
                details={"subscription_id": subscription_id},
            )
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.id == subscription_id)
            .values(payment_status=PaymentStatus.PAID.value, updated_at=normalized_now)
        )
        updated = _get_subscription(session, subscription_id)

    logger.info("[subscriptions] paid", extra={"subscription_id": subscription_id})
    return updated


def expire_subscriptions(now: Optional[Any] = None) -> int:
    """
    Mark every past-due, not yet closed subscription as expired.

    Idempotent. Returns the number of rows transitioned.
    """
    normalized_now = _normalize_now(now)
    with get_db_session() as session:
        result = session.execute(
            update(subscriptions)
            .where(subscriptions.c.expires_at.is_not(None))
            .where(subscriptions.c.expires_at <= normalized_now)
            .where(subscriptions.c.status.notin_(CLOSED_STATUSES))
            .values(status=SubscriptionStatus.EXPIRED.value, updated_at=normalized_now)
        )
        count = result.rowcount or 0

    logger.info("[subscriptions] expire sweep", extra={"expired": count})
    return count


def get_user_subscriptions(user_id: str) -> List[Subscription]:
    """Subscription history, newest first. Unpaid purchases are left out."""
    with get_db_session() as session:
        rows = session.execute(
            select(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .where(subscriptions.c.payment_status != PaymentStatus.PENDING.value)
            .order_by(subscriptions.c.created_at.desc(), subscriptions.c.id.desc())
        ).fetchall()
        return [row_to_subscription(row) for row in rows]


def get_guest_limit(event: Event, now: Optional[Any] = None) -> Limit:
    with get_db_session() as session:
        return _get_effective_limit(
            session, event, event.user_id, GUESTS_PER_EVENT, default_entitlements(), _normalize_now(now)
        )


def can_add_guests(
    event: Event,
    current_guest_count: int,
    additional: int = 1,
    now: Optional[Any] = None,
) -> bool:
    if additional < 0:
        raise ValidationError("additional must be >= 0", field="additional")
    effective = get_guest_limit(event, now=now)
    if effective.is_unlimited:
        return True
    return current_guest_count + additional <= effective.amount


def get_remaining_guest_slots(event: Event, current_guest_count: int, now: Optional[Any] = None) -> Limit:
    """Remaining guest capacity; unlimited stays unlimited."""
    return get_guest_limit(event, now=now).remaining(current_guest_count)
