"""
partyplanner/models/entitlement.py

Entitlement types: defaults, resolved entitlements, denial decisions.

Limit keys and feature keys are dotted strings ("guests.max_per_event",
"budget.enabled"). Plans may define any subset; missing keys fall back to
EntitlementDefaults.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from partyplanner.models.limit import Limit


# Limit keys
EVENT_CREATIONS = "events.creations_per_billing_period"
GUESTS_PER_EVENT = "guests.max_per_event"
COLLABORATORS_PER_EVENT = "collaborators.max_per_event"
PHOTOS_PER_EVENT = "photos.max_per_event"

PER_EVENT_LIMIT_KEYS = (GUESTS_PER_EVENT, COLLABORATORS_PER_EVENT, PHOTOS_PER_EVENT)

# Feature keys known to the product. Plans may carry others.
FEATURE_KEYS = (
    "budget.enabled",
    "planning.enabled",
    "tasks.enabled",
    "guests.manage",
    "guests.import",
    "guests.export",
    "invitations.sms",
    "invitations.whatsapp",
    "collaborators.manage",
    "roles_permissions.enabled",
    "exports.pdf",
    "exports.excel",
    "exports.csv",
    "history.enabled",
    "reporting.enabled",
    "branding.custom",
    "support.whatsapp_priority",
    "support.dedicated",
    "multi_client.enabled",
    "assistance.human",
)


@dataclass(frozen=True)
class EntitlementDefaults:
    """Free-tier entitlements, injected into the resolvers."""
    limits: Dict[str, Limit]
    features: Dict[str, bool]

    @classmethod
    def from_settings(cls, cfg) -> "EntitlementDefaults":
        return cls(
            limits={
                EVENT_CREATIONS: Limit.finite(cfg.FREE_TIER_EVENT_CREATIONS),
                GUESTS_PER_EVENT: Limit.finite(cfg.FREE_TIER_MAX_GUESTS),
                COLLABORATORS_PER_EVENT: Limit.finite(cfg.FREE_TIER_MAX_COLLABORATORS),
                PHOTOS_PER_EVENT: Limit.finite(cfg.FREE_TIER_MAX_PHOTOS),
            },
            features={key: False for key in FEATURE_KEYS},
        )

    def limit(self, key: str) -> Limit:
        return self.limits.get(key, Limit.finite(0))


class EntitlementSource(str, Enum):
    DEFAULTS = "defaults"
    SUBSCRIPTION = "subscription"
    EVENT_SNAPSHOT = "event_snapshot"


@dataclass(frozen=True)
class Entitlements:
    features: Dict[str, bool]
    limits: Dict[str, Limit]
    source: EntitlementSource
    plan_id: Optional[str] = None
    subscription_id: Optional[int] = None

    def has(self, feature: str) -> bool:
        return bool(self.features.get(feature, False))

    def limit(self, key: str) -> Limit:
        return self.limits.get(key, Limit.finite(0))

    def to_dict(self) -> dict:
        return {
            "source": self.source.value,
            "plan_id": self.plan_id,
            "subscription_id": self.subscription_id,
            "features": dict(self.features),
            "limits": {k: v.to_raw() for k, v in self.limits.items()},
        }


class DenialReason(str, Enum):
    QUOTA = "quota"
    FEATURE = "feature"
    LIMIT = "limit"
    PERMISSION = "permission"


@dataclass(frozen=True)
class Decision:
    """Outcome of an entitlement check. Denials are data, not exceptions."""
    allowed: bool
    reason: Optional[DenialReason] = None
    message: Optional[str] = None
    details: Dict[str, object] = field(default_factory=dict)

    @classmethod
    def allow(cls, **details) -> "Decision":
        return cls(allowed=True, details=details)

    @classmethod
    def deny(cls, reason: DenialReason, message: str, **details) -> "Decision":
        return cls(allowed=False, reason=reason, message=message, details=details)

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        payload = {"allowed": self.allowed}
        if not self.allowed:
            payload["reason"] = self.reason.value if self.reason else None
            payload["message"] = self.message
        payload.update(self.details)
        return payload
