"""
partyplanner/models/subscription.py

Subscription and top-up models.

Lifecycle: trial -> active -> {cancelled, expired}. Renewal and upgrade
keep a subscription active. event_id is None for account-level
subscriptions; at most one of those per user is non-cancelled.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


# Statuses that can still grant entitlements
LIVE_STATUSES = (SubscriptionStatus.TRIAL.value, SubscriptionStatus.ACTIVE.value)
# Terminal statuses
CLOSED_STATUSES = (SubscriptionStatus.CANCELLED.value, SubscriptionStatus.EXPIRED.value)


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    payment_status: PaymentStatus
    event_id: Optional[str] = None
    price: int = 0
    creations_used: int = 0
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_account_level(self) -> bool:
        return self.event_id is None

    def is_live(self, now: datetime) -> bool:
        """Grants entitlements at `now` (same rule as the active lookup query)."""
        if self.status.value not in LIVE_STATUSES and self.payment_status != PaymentStatus.PAID:
            return False
        return self.expires_at is None or self.expires_at > now


class TopUp(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    credits: int
    subscription_id: Optional[int] = None
    price: int = 0
    purchased_at: datetime
    expires_at: Optional[datetime] = None
