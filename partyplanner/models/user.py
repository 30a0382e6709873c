import hashlib
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    created_at: datetime
    display_name: Optional[str] = None
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @staticmethod
    def normalized_display_name(user_id: str, display_name: Optional[str] = None) -> str:
        if display_name and display_name.strip():
            return display_name.strip()
        # Deterministic fallback handle
        h = hashlib.sha1(user_id.encode("utf-8")).hexdigest()
        return f"@guest_{h[-6:]}"
