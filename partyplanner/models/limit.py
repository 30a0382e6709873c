"""
partyplanner/models/limit.py

Numeric entitlement limit.

Storage and the public API encode "unlimited" as -1. Inside the service a
limit is either Limit.finite(n) or Limit.unlimited(), so the sentinel never
reaches max/remaining/percentage arithmetic.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Optional


@dataclass(frozen=True)
class Limit:
    amount: Optional[int]  # None = unlimited

    UNLIMITED_RAW: ClassVar[int] = -1

    @classmethod
    def finite(cls, amount: int) -> "Limit":
        if isinstance(amount, bool) or int(amount) < 0:
            raise ValueError(f"finite limit must be a non-negative int, got {amount!r}")
        return cls(int(amount))

    @classmethod
    def unlimited(cls) -> "Limit":
        return cls(None)

    @classmethod
    def from_raw(cls, raw: Any, default: int = 0) -> "Limit":
        """Decode a stored value: -1 is unlimited, None falls back to `default`."""
        if isinstance(raw, Limit):
            return raw
        if raw is None:
            raw = default
        if isinstance(raw, bool):
            raise ValueError(f"limit value must be an int, got {raw!r}")
        value = int(raw)
        if value == cls.UNLIMITED_RAW:
            return cls.unlimited()
        return cls.finite(value)

    @property
    def is_unlimited(self) -> bool:
        return self.amount is None

    def to_raw(self) -> int:
        return self.UNLIMITED_RAW if self.amount is None else self.amount

    def most_generous(self, other: "Limit") -> "Limit":
        if self.is_unlimited or other.is_unlimited:
            return Limit.unlimited()
        return Limit.finite(max(self.amount, other.amount))

    def plus(self, credits: int) -> "Limit":
        if self.is_unlimited:
            return self
        return Limit.finite(self.amount + max(0, int(credits)))

    def remaining(self, used: int) -> "Limit":
        if self.is_unlimited:
            return self
        return Limit.finite(max(0, self.amount - max(0, int(used))))

    def allows(self, total: int) -> bool:
        """True when `total` units fit under this limit."""
        return self.is_unlimited or total <= self.amount

    def percent_used(self, used: int) -> int:
        if self.is_unlimited:
            return 0
        if self.amount == 0:
            return 100
        # round half up (12.5 -> 13)
        return int(used * 100 / self.amount + 0.5)

    def __str__(self) -> str:
        return "unlimited" if self.is_unlimited else str(self.amount)
