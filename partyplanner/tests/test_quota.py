"""
Tests for the event creation quota.

Covers:
- No subscription, finite and unlimited bases
- Top-up eligibility (bound, unbound, expired, other subscription)
- Atomic consumption guard
- Advisory warnings
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import insert, select, update

from partyplanner.core.database import get_db_session, subscriptions, top_ups
from partyplanner.core.errors import ValidationError
from partyplanner.features.entitlements.service import get_active_subscription
from partyplanner.features.quota import service as quota_service
from partyplanner.features.quota.service import (
    add_top_up,
    can_create_event,
    check_event_creation,
    consume_creation,
    get_creations_quota,
    get_quota_percentage,
    should_warn_about_quota,
)
from partyplanner.features.subscriptions.service import cancel_subscription, create_subscription
from partyplanner.models.entitlement import DenialReason, EVENT_CREATIONS, GUESTS_PER_EVENT
from partyplanner.models.quota import QuotaWarning


def _set_used(subscription_id: int, used: int) -> None:
    with get_db_session() as session:
        session.execute(
            update(subscriptions).where(subscriptions.c.id == subscription_id).values(creations_used=used)
        )


def _insert_top_up(user_id: str, credits: int, subscription_id=None, expires_at=None) -> None:
    with get_db_session() as session:
        session.execute(
            insert(top_ups).values(
                user_id=user_id,
                subscription_id=subscription_id,
                credits=credits,
                price=0,
                purchased_at=datetime.now(timezone.utc),
                expires_at=expires_at,
            )
        )


def test_no_subscription_quota(new_user):
    quota = get_creations_quota(new_user())
    assert quota.to_dict() == {
        "base": 0,
        "topup": 0,
        "total": 0,
        "used": 0,
        "remaining": 0,
        "unlimited": False,
        "percent_used": 100,
        "can_create": False,
    }


def test_trial_quota(new_user):
    user_id = new_user(trial=True)
    quota = get_creations_quota(user_id)
    assert quota.base.amount == 1
    assert quota.total.amount == 1
    assert quota.remaining.amount == 1
    assert quota.percent_used == 0
    assert can_create_event(user_id)


def test_quota_read_is_idempotent(new_user):
    user_id = new_user(trial=True)
    assert get_creations_quota(user_id) == get_creations_quota(user_id)


def test_consume_until_exhausted(new_user):
    user_id = new_user(trial=True)
    assert consume_creation(user_id) is True
    assert consume_creation(user_id) is False

    quota = get_creations_quota(user_id)
    assert quota.used == 1
    assert quota.remaining.amount == 0
    assert quota.percent_used == 100
    assert not quota.can_create


def test_consume_guard_rejects_stale_quota(new_user, monkeypatch):
    """A concurrent request that read the quota before the last credit was taken."""
    user_id = new_user(trial=True)
    stale = get_creations_quota(user_id)
    assert consume_creation(user_id) is True

    monkeypatch.setattr(quota_service, "_quota_for", lambda *args: stale)
    assert consume_creation(user_id) is False
    assert get_active_subscription(user_id).creations_used == 1


def test_unlimited_base(new_user, make_plan):
    make_plan("illimite", limits={EVENT_CREATIONS: -1, GUESTS_PER_EVENT: 10})
    user_id = new_user()
    create_subscription(user_id, "illimite")
    for _ in range(3):
        assert consume_creation(user_id)

    quota = get_creations_quota(user_id)
    assert quota.unlimited
    assert quota.total.is_unlimited
    assert quota.remaining.is_unlimited
    assert quota.percent_used == 0
    assert quota.used == 3
    assert quota.to_dict()["remaining"] == -1
    assert should_warn_about_quota(user_id) is None


def test_percent_rounds(new_user, make_plan):
    make_plan("huit", limits={EVENT_CREATIONS: 8})
    user_id = new_user()
    sub = create_subscription(user_id, "huit")
    _set_used(sub.id, 1)
    assert get_quota_percentage(user_id) == 13


@pytest.mark.parametrize(
    "used,expected",
    [
        (0, None),
        (7, None),
        (8, QuotaWarning.QUOTA_80),
        (9, QuotaWarning.QUOTA_90),
        (10, QuotaWarning.QUOTA_REACHED),
    ],
)
def test_warnings(new_user, make_plan, used, expected):
    make_plan("dix", limits={EVENT_CREATIONS: 10})
    user_id = new_user()
    sub = create_subscription(user_id, "dix")
    _set_used(sub.id, used)
    assert should_warn_about_quota(user_id) == expected


def test_warning_never_blocks_below_full(new_user, make_plan):
    make_plan("dix", limits={EVENT_CREATIONS: 10})
    user_id = new_user()
    sub = create_subscription(user_id, "dix")
    _set_used(sub.id, 9)
    assert should_warn_about_quota(user_id) == QuotaWarning.QUOTA_90
    assert can_create_event(user_id)


def test_add_top_up_binds_to_active_subscription(new_user):
    user_id = new_user(trial=True)
    sub = get_active_subscription(user_id)
    top_up = add_top_up(user_id, 2, price=1000)
    assert top_up.subscription_id == sub.id
    assert top_up.expires_at == sub.expires_at

    quota = get_creations_quota(user_id)
    assert quota.topup == 2
    assert quota.total.amount == 3


def test_add_top_up_without_subscription_is_unbound(new_user):
    user_id = new_user()
    top_up = add_top_up(user_id, 2)
    assert top_up.subscription_id is None
    assert top_up.expires_at is None
    assert get_creations_quota(user_id).total.amount == 0

    create_subscription(user_id, "pro")
    quota = get_creations_quota(user_id)
    assert quota.topup == 2
    assert quota.total.amount == 200 + 2


def test_missing_plan_keeps_one_creation(new_user):
    user_id = new_user()
    sub = create_subscription(user_id, "pro")
    with get_db_session() as session:
        session.execute(update(subscriptions).where(subscriptions.c.id == sub.id).values(plan_id="retired"))

    quota = get_creations_quota(user_id)
    assert quota.base.amount == quota_service.MISSING_PLAN_CREATIONS
    assert quota.total.amount == 1
    assert can_create_event(user_id)


def test_add_top_up_rejects_non_positive(new_user):
    with pytest.raises(ValidationError) as exc:
        add_top_up(new_user(trial=True), 0)
    assert exc.value.field == "credits"


def test_top_up_eligibility(new_user):
    user_id = new_user()
    old = create_subscription(user_id, "pro")
    cancel_subscription(old.id)
    current = create_subscription(user_id, "agence")
    now = datetime.now(timezone.utc)

    _insert_top_up(user_id, 1, subscription_id=current.id)
    _insert_top_up(user_id, 2)  # unbound
    _insert_top_up(user_id, 4, subscription_id=old.id)  # other subscription
    _insert_top_up(user_id, 8, expires_at=now - timedelta(days=1))  # expired
    _insert_top_up(user_id, 16, expires_at=now + timedelta(days=1))

    quota = get_creations_quota(user_id)
    assert quota.topup == 1 + 2 + 16
    assert quota.total.amount == 500 + 19


def test_top_ups_do_not_revive_missing_subscription(new_user):
    user_id = new_user()
    _insert_top_up(user_id, 5)
    assert get_creations_quota(user_id).total.amount == 0
    assert not can_create_event(user_id)


def test_check_event_creation_decision(new_user):
    user_id = new_user()
    decision = check_event_creation(user_id)
    assert not decision
    assert decision.reason == DenialReason.QUOTA
    assert decision.to_dict()["reason"] == "quota"


def test_consume_increments_row(new_user):
    user_id = new_user(trial=True)
    sub = get_active_subscription(user_id)
    consume_creation(user_id)
    with get_db_session() as session:
        used = session.execute(select(subscriptions.c.creations_used).where(subscriptions.c.id == sub.id)).scalar()
    assert used == 1
