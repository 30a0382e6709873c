"""
partyplanner/models/plan.py

Plan model: a named tier carrying numeric limits and feature flags.
"""

from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from partyplanner.models.limit import Limit


class Plan(BaseModel):
    """
    Plan represents a subscription tier.

    Examples:
    - essai-gratuit (14-day trial, one-time use)
    - pro
    - agence

    `limits` values use -1 for unlimited; read them through get_limit().
    A plan referenced by a subscription is never mutated, only replaced.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    description: Optional[str] = None
    price: int = 0
    duration_days: int = 30
    is_trial: bool = False
    is_one_time_use: bool = False
    is_active: bool = True
    sort_order: int = 0
    limits: Dict[str, int] = Field(default_factory=dict)
    features: Dict[str, bool] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    def get_limit(self, key: str, default: int = 0) -> Limit:
        return Limit.from_raw(self.limits.get(key), default=default)

    def has_feature(self, key: str) -> bool:
        return bool(self.features.get(key, False))
