from datetime import datetime
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict

from partyplanner.models.role import SystemRole


class Collaborator(BaseModel):
    """User invited onto an event. Pending until accepted_at is set."""
    model_config = ConfigDict(frozen=True)

    id: int
    event_id: str
    user_id: str
    roles: Tuple[SystemRole, ...] = ()
    custom_role_id: Optional[str] = None
    invited_by: Optional[str] = None
    invited_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None

    @property
    def is_accepted(self) -> bool:
        return self.accepted_at is not None

    @property
    def is_pending(self) -> bool:
        return self.invited_at is not None and self.accepted_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "roles": [r.value for r in self.roles],
            "custom_role_id": self.custom_role_id,
            "invited_by": self.invited_by,
            "invited_at": self.invited_at.isoformat() if self.invited_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
        }
