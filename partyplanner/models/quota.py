from dataclasses import dataclass
from enum import Enum

from partyplanner.models.limit import Limit


class QuotaWarning(str, Enum):
    QUOTA_REACHED = "quota_reached"
    QUOTA_90 = "quota_90"
    QUOTA_80 = "quota_80"


@dataclass(frozen=True)
class CreationsQuota:
    """Event creation credits for the current billing period."""
    base: Limit
    topup: int
    total: Limit
    used: int
    remaining: Limit
    percent_used: int

    @property
    def unlimited(self) -> bool:
        return self.base.is_unlimited

    @property
    def can_create(self) -> bool:
        return self.unlimited or self.remaining.amount > 0

    def to_dict(self) -> dict:
        return {
            "base": self.base.to_raw(),
            "topup": self.topup,
            "total": self.total.to_raw(),
            "used": self.used,
            "remaining": self.remaining.to_raw(),
            "unlimited": self.unlimited,
            "percent_used": self.percent_used,
            "can_create": self.can_create,
        }
