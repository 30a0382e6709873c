"""
partyplanner/models/role.py

Collaborator roles.

Role = SystemRole | CustomRole. System roles carry a fixed permission
table; custom roles are defined per event with an explicit permission set.
"""

from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Union
from pydantic import BaseModel, ConfigDict


class SystemRole(str, Enum):
    OWNER = "owner"
    COORDINATOR = "coordinator"
    GUEST_MANAGER = "guest_manager"
    PLANNER = "planner"
    ACCOUNTANT = "accountant"
    PHOTOGRAPHER = "photographer"
    SUPERVISOR = "supervisor"
    REPORTER = "reporter"
    # Legacy values still present in stored data
    EDITOR = "editor"
    VIEWER = "viewer"

    @property
    def canonical(self) -> "SystemRole":
        """Resolve legacy aliases (editor -> coordinator, viewer -> supervisor)."""
        return _LEGACY_ALIASES.get(self, self)

    @property
    def is_legacy(self) -> bool:
        return self in _LEGACY_ALIASES

    @classmethod
    def assignable(cls) -> tuple:
        """Roles that can be given to a collaborator through the API."""
        return tuple(r for r in cls if r is not cls.OWNER and not r.is_legacy)


_LEGACY_ALIASES = {
    SystemRole.EDITOR: SystemRole.COORDINATOR,
    SystemRole.VIEWER: SystemRole.SUPERVISOR,
}

ROLE_LABELS = {
    SystemRole.OWNER: "Propriétaire",
    SystemRole.COORDINATOR: "Coordinateur",
    SystemRole.GUEST_MANAGER: "Gestionnaire d'invités",
    SystemRole.PLANNER: "Planificateur",
    SystemRole.ACCOUNTANT: "Comptable",
    SystemRole.PHOTOGRAPHER: "Photographe",
    SystemRole.SUPERVISOR: "Superviseur",
    SystemRole.REPORTER: "Rapporteur",
    SystemRole.EDITOR: "Éditeur",
    SystemRole.VIEWER: "Lecteur",
}


class CustomRole(BaseModel):
    model_config = ConfigDict(frozen=True)

    role_id: str
    event_id: str
    name: str
    permissions: FrozenSet[str]
    description: Optional[str] = None
    color: str = "gray"
    is_system: bool = False
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "role_id": self.role_id,
            "event_id": self.event_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "is_system": self.is_system,
            "permissions": sorted(self.permissions),
        }


Role = Union[SystemRole, CustomRole]
