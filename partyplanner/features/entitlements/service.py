"""
partyplanner/features/entitlements/service.py

Entitlement resolution service.

Handles:
- Effective features and limits for a user, optionally scoped to an event
- Account-level active subscription lookup
- "Maximum généreux" per-event limits (frozen snapshot vs live plan)
- Snapshot capture for new events

Missing plans or subscriptions never raise: they resolve to the free tier.
"""

from datetime import datetime, timezone
from typing import Any, Optional
import logging
from sqlalchemy import select, or_

from partyplanner.core.config import settings
from partyplanner.core.database import get_db_session, subscriptions, as_utc
from partyplanner.core.errors import FeatureUnavailableError, LimitExceededError
from partyplanner.features.plans.service import _get_plan
from partyplanner.models.entitlement import (
    COLLABORATORS_PER_EVENT,
    GUESTS_PER_EVENT,
    PER_EVENT_LIMIT_KEYS,
    PHOTOS_PER_EVENT,
    Decision,
    DenialReason,
    EntitlementDefaults,
    Entitlements,
    EntitlementSource,
)
from partyplanner.models.event import Event, EventSnapshot
from partyplanner.models.limit import Limit
from partyplanner.models.plan import Plan
from partyplanner.models.subscription import (
    LIVE_STATUSES,
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


def default_entitlements() -> EntitlementDefaults:
    """Free-tier defaults built from settings."""
    return EntitlementDefaults.from_settings(settings)


def row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        event_id=row.event_id,
        plan_id=row.plan_id,
        status=SubscriptionStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        price=row.price,
        creations_used=row.creations_used,
        starts_at=as_utc(row.starts_at),
        expires_at=as_utc(row.expires_at),
        created_at=as_utc(row.created_at),
    )


def _active_subscription(session, user_id: str, now: datetime) -> Optional[Subscription]:
    """
    Newest account-level subscription that currently grants entitlements:
    (trial/active OR paid) AND not past expires_at. A cancelled but paid
    subscription keeps its plan until it expires.
    """
    row = session.execute(
        select(subscriptions)
        .where(subscriptions.c.user_id == user_id)
        .where(subscriptions.c.event_id.is_(None))
        .where(
            or_(
                subscriptions.c.status.in_(LIVE_STATUSES),
                subscriptions.c.payment_status == PaymentStatus.PAID.value,
            )
        )
        .where(or_(subscriptions.c.expires_at.is_(None), subscriptions.c.expires_at > now))
        .order_by(subscriptions.c.created_at.desc(), subscriptions.c.id.desc())
        .limit(1)
    ).first()
    return row_to_subscription(row) if row else None


def get_active_subscription(user_id: str, now: Optional[Any] = None) -> Optional[Subscription]:
    with get_db_session() as session:
        return _active_subscription(session, user_id, _normalize_now(now))


def has_active_subscription(user_id: str, now: Optional[Any] = None) -> bool:
    return get_active_subscription(user_id, now=now) is not None


def get_current_plan(user_id: str, now: Optional[Any] = None) -> Optional[Plan]:
    """Plan bound to the active subscription, None on the free tier."""
    with get_db_session() as session:
        sub = _active_subscription(session, user_id, _normalize_now(now))
        if sub is None:
            return None
        return _get_plan(session, sub.plan_id)


def _merge_plan(plan: Plan, defaults: EntitlementDefaults) -> tuple:
    features = dict(defaults.features)
    for key, enabled in plan.features.items():
        features[key] = bool(enabled)
    limits = dict(defaults.limits)
    for key, raw in plan.limits.items():
        limits[key] = Limit.from_raw(raw)
    return features, limits


def _resolve_live(
    session,
    user_id: str,
    defaults: EntitlementDefaults,
    now: datetime,
) -> Entitlements:
    sub = _active_subscription(session, user_id, now)
    if sub is None:
        return Entitlements(
            features=dict(defaults.features),
            limits=dict(defaults.limits),
            source=EntitlementSource.DEFAULTS,
        )

    plan = _get_plan(session, sub.plan_id)
    if plan is None:
        logger.warning(
            "[entitlements] subscription references missing plan",
            extra={"user_id": user_id, "subscription_id": sub.id, "plan_id": sub.plan_id},
        )
        return Entitlements(
            features=dict(defaults.features),
            limits=dict(defaults.limits),
            source=EntitlementSource.DEFAULTS,
            subscription_id=sub.id,
        )

    features, limits = _merge_plan(plan, defaults)
    return Entitlements(
        features=features,
        limits=limits,
        source=EntitlementSource.SUBSCRIPTION,
        plan_id=plan.plan_id,
        subscription_id=sub.id,
    )


def _effective_limit(event: Event, live: Entitlements, key: str) -> Limit:
    return event.stored_limit(key).most_generous(live.limit(key))


def _resolve(
    session,
    user_id: str,
    event: Optional[Event],
    defaults: EntitlementDefaults,
    now: datetime,
) -> Entitlements:
    live = _resolve_live(session, user_id, defaults, now)
    if event is None or event.features_enabled is None:
        return live

    # Snapshot features win outright; absent keys are disabled
    features = {key: False for key in defaults.features}
    for key, enabled in event.features_enabled.items():
        features[key] = bool(enabled)

    limits = dict(live.limits)
    for key in PER_EVENT_LIMIT_KEYS:
        limits[key] = _effective_limit(event, live, key)

    return Entitlements(
        features=features,
        limits=limits,
        source=EntitlementSource.EVENT_SNAPSHOT,
        plan_id=live.plan_id,
        subscription_id=live.subscription_id,
    )


def resolve(
    user_id: str,
    event: Optional[Event] = None,
    *,
    defaults: Optional[EntitlementDefaults] = None,
    now: Optional[Any] = None,
) -> Entitlements:
    """
    Effective entitlements for a user, optionally scoped to an event.

    With an event carrying a snapshot, features come only from the snapshot
    and per-event limits are the most generous of snapshot and live plan.
    Otherwise the live account subscription applies, or the free tier.
    """
    with get_db_session() as session:
        return _resolve(session, user_id, event, defaults or default_entitlements(), _normalize_now(now))


def limit(
    user_id: str,
    key: str,
    *,
    defaults: Optional[EntitlementDefaults] = None,
    now: Optional[Any] = None,
) -> Limit:
    """Live limit for a key. Unknown keys resolve to finite 0."""
    return resolve(user_id, defaults=defaults, now=now).limit(key)


def _get_effective_limit(
    session,
    event: Event,
    user_id: str,
    key: str,
    defaults: EntitlementDefaults,
    now: datetime,
) -> Limit:
    live = _resolve_live(session, user_id, defaults, now)
    return _effective_limit(event, live, key)


def get_effective_limit(
    event: Event,
    user_id: str,
    key: str,
    *,
    defaults: Optional[EntitlementDefaults] = None,
    now: Optional[Any] = None,
) -> Limit:
    """
    "Maximum généreux": the stored event limit against the user's live limit.

    Unlimited on either side wins; otherwise the larger value. The event
    keeps what it was created with and still benefits from upgrades.
    """
    with get_db_session() as session:
        return _get_effective_limit(
            session, event, user_id, key, defaults or default_entitlements(), _normalize_now(now)
        )


def can(
    user_id: str,
    feature: str,
    event: Optional[Event] = None,
    *,
    defaults: Optional[EntitlementDefaults] = None,
    now: Optional[Any] = None,
) -> bool:
    """
    Feature check for UI gating: enabled on the event snapshot OR on the
    live subscription.
    """
    if event is not None and event.features_enabled and event.features_enabled.get(feature):
        return True
    return resolve(user_id, defaults=defaults, now=now).has(feature)


def _snapshot_for_new_event(
    session,
    user_id: str,
    defaults: EntitlementDefaults,
    now: datetime,
) -> EventSnapshot:
    live = _resolve_live(session, user_id, defaults, now)
    return EventSnapshot(
        max_guests_allowed=live.limit(GUESTS_PER_EVENT).to_raw(),
        max_collaborators_allowed=live.limit(COLLABORATORS_PER_EVENT).to_raw(),
        max_photos_allowed=live.limit(PHOTOS_PER_EVENT).to_raw(),
        features_enabled={key: True for key, enabled in live.features.items() if enabled},
    )


def snapshot_for_new_event(
    user_id: str,
    *,
    defaults: Optional[EntitlementDefaults] = None,
    now: Optional[Any] = None,
) -> EventSnapshot:
    """Limits and enabled features to freeze onto an event created now."""
    with get_db_session() as session:
        return _snapshot_for_new_event(session, user_id, defaults or default_entitlements(), _normalize_now(now))


def check_feature(user_id: str, feature: str, event: Optional[Event] = None, *, now: Optional[Any] = None) -> Decision:
    if can(user_id, feature, event, now=now):
        return Decision.allow(feature=feature)
    logger.info(
        "[entitlement] DENIED",
        extra={"user_id": user_id, "feature": feature, "event_id": event.event_id if event else None},
    )
    return Decision.deny(
        DenialReason.FEATURE,
        f"Feature {feature} is not included in your plan",
        feature=feature,
    )


def check_limit(
    event: Event,
    user_id: str,
    key: str,
    current: int,
    additional: int = 1,
    *,
    now: Optional[Any] = None,
) -> Decision:
    effective = get_effective_limit(event, user_id, key, now=now)
    if effective.allows(current + additional):
        return Decision.allow(limit_key=key, limit=effective.to_raw())
    logger.info(
        "[entitlement] LIMIT_REACHED",
        extra={
            "user_id": user_id,
            "event_id": event.event_id,
            "limit_key": key,
            "limit": effective.to_raw(),
            "current": current,
            "requested": additional,
        },
    )
    return Decision.deny(
        DenialReason.LIMIT,
        f"Limit {key} reached ({effective})",
        limit_key=key,
        limit=effective.to_raw(),
        current=current,
    )


def assert_can(user_id: str, feature: str, event: Optional[Event] = None, *, now: Optional[Any] = None) -> None:
    decision = check_feature(user_id, feature, event, now=now)
    if not decision:
        raise FeatureUnavailableError(decision.message, details={"feature": feature})


def assert_within_limit(
    event: Event,
    user_id: str,
    key: str,
    current: int,
    additional: int = 1,
    *,
    now: Optional[Any] = None,
) -> None:
    decision = check_limit(event, user_id, key, current, additional, now=now)
    if not decision:
        raise LimitExceededError(decision.message, details=dict(decision.details))
