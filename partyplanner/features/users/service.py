"""
User domain service.
- get_or_create_user(user_id): first sight starts the trial when enabled
- get_user(user_id)
- normalize_display_name()
"""

from datetime import datetime, timezone
from typing import Optional
import logging
from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError

from partyplanner.core.config import settings
from partyplanner.core.database import get_db_session, users as app_users, as_utc
from partyplanner.features.subscriptions.service import create_trial_subscription
from partyplanner.models.user import User, UserRole

logger = logging.getLogger(__name__)


def normalize_display_name(user_id: str, display_name: Optional[str]) -> str:
    return User.normalized_display_name(user_id, display_name)


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        display = row.display_name or normalize_display_name(row.user_id, None)
        return User(
            user_id=row.user_id,
            created_at=as_utc(row.created_at),
            display_name=display,
            role=UserRole(row.role),
        )


def get_or_create_user(
    user_id: str,
    display_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> User:
    existing = get_user(user_id)
    if existing:
        return existing

    created_at = now or datetime.now(timezone.utc)
    display = normalize_display_name(user_id, display_name)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    display_name=display,
                    role=UserRole.USER.value,
                    created_at=created_at,
                )
            )
    except IntegrityError:
        # Concurrent first request for the same user
        return get_user(user_id)

    logger.info("[users] created", extra={"user_id": user_id})

    if settings.AUTO_ASSIGN_TRIAL:
        # No trial configured is a normal outcome (returns None)
        create_trial_subscription(user_id, now=created_at)

    return User(user_id=user_id, created_at=created_at, display_name=display, role=UserRole.USER)
