"""
Request identity for the Party Planner API.

Authentication itself lives in front of this service; requests arrive with
the caller's id in the X-User-Id header. The user row is upserted on first
sight so foreign keys (events, subscriptions) resolve.
"""
from fastapi import Header, HTTPException
from typing import Optional
import logging

from partyplanner.features.users.service import get_or_create_user

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, description="Authenticated user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Raises:
        HTTPException 401: Missing X-User-Id header
    """
    if x_user_id and x_user_id.strip():
        user = get_or_create_user(x_user_id.strip())
        return user.user_id

    logger.warning("[auth] missing X-User-Id header")
    raise HTTPException(status_code=401, detail="Missing X-User-Id header")
