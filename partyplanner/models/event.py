"""
partyplanner/models/event.py

Event with its entitlement snapshot.

The max_* fields and features_enabled are copied from the owner's
entitlements when the event is created and never shrink afterwards.
"""

from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict

from partyplanner.models.entitlement import (
    COLLABORATORS_PER_EVENT,
    GUESTS_PER_EVENT,
    PHOTOS_PER_EVENT,
)
from partyplanner.models.limit import Limit


class EventSnapshot(BaseModel):
    """Limits and features frozen onto an event at creation time."""
    model_config = ConfigDict(frozen=True)

    max_guests_allowed: int
    max_collaborators_allowed: int
    max_photos_allowed: int
    # Only enabled features are stored
    features_enabled: Dict[str, bool]


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    user_id: str
    title: str
    max_guests_allowed: Optional[int] = None
    max_collaborators_allowed: Optional[int] = None
    max_photos_allowed: Optional[int] = None
    features_enabled: Optional[Dict[str, bool]] = None
    created_at: Optional[datetime] = None

    def stored_limit(self, limit_key: str) -> Limit:
        """Snapshot value for a per-event limit key; 0 when unset or unknown."""
        raw = {
            GUESTS_PER_EVENT: self.max_guests_allowed,
            COLLABORATORS_PER_EVENT: self.max_collaborators_allowed,
            PHOTOS_PER_EVENT: self.max_photos_allowed,
        }.get(limit_key)
        return Limit.from_raw(raw, default=0)

    @property
    def has_snapshot(self) -> bool:
        return self.features_enabled is not None
