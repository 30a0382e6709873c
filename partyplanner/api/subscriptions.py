"""
partyplanner/api/subscriptions.py
Subscription lifecycle API: purchase, upgrade, cancel, renew, top-ups.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from partyplanner.core.auth import get_current_user_id
from partyplanner.core.errors import NotFoundError, PermissionError
from partyplanner.features.entitlements.service import get_active_subscription
from partyplanner.features.quota.service import add_top_up
from partyplanner.features.subscriptions.service import (
    cancel_subscription,
    create_subscription,
    get_subscription,
    get_user_subscriptions,
    mark_paid,
    renew_subscription,
    upgrade_to_plan,
)
from partyplanner.features.users.service import get_user

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


class SubscribeRequest(BaseModel):
    plan_id: str


class TopUpRequest(BaseModel):
    credits: int = Field(..., gt=0)
    price: int = Field(0, ge=0)


def _owned_subscription(subscription_id: int, user_id: str):
    sub = get_subscription(subscription_id)
    if sub is None:
        raise NotFoundError(f"Subscription {subscription_id} not found", details={"subscription_id": subscription_id})
    if sub.user_id != user_id:
        raise PermissionError("Not your subscription", details={"subscription_id": subscription_id})
    return sub


@router.get("")
async def list_subscriptions_endpoint(user_id: str = Depends(get_current_user_id)):
    subs = get_user_subscriptions(user_id)
    return {"data": [s.model_dump(mode="json") for s in subs], "count": len(subs)}


@router.get("/current")
async def current_subscription_endpoint(user_id: str = Depends(get_current_user_id)):
    sub = get_active_subscription(user_id)
    return {"data": sub.model_dump(mode="json") if sub else None}


@router.post("")
async def subscribe_endpoint(request: SubscribeRequest, user_id: str = Depends(get_current_user_id)):
    sub = create_subscription(user_id, request.plan_id)
    return {"data": sub.model_dump(mode="json")}


@router.post("/top-ups")
async def top_up_endpoint(request: TopUpRequest, user_id: str = Depends(get_current_user_id)):
    top_up = add_top_up(user_id, request.credits, request.price)
    return {"data": top_up.model_dump(mode="json")}


@router.post("/{subscription_id}/upgrade")
async def upgrade_endpoint(
    subscription_id: int, request: SubscribeRequest, user_id: str = Depends(get_current_user_id)
):
    _owned_subscription(subscription_id, user_id)
    return {"data": upgrade_to_plan(subscription_id, request.plan_id).model_dump(mode="json")}


@router.post("/{subscription_id}/cancel")
async def cancel_endpoint(subscription_id: int, user_id: str = Depends(get_current_user_id)):
    _owned_subscription(subscription_id, user_id)
    return {"data": cancel_subscription(subscription_id).model_dump(mode="json")}


@router.post("/{subscription_id}/renew")
async def renew_endpoint(subscription_id: int, user_id: str = Depends(get_current_user_id)):
    _owned_subscription(subscription_id, user_id)
    return {"data": renew_subscription(subscription_id).model_dump(mode="json")}


@router.post("/{subscription_id}/mark-paid")
async def mark_paid_endpoint(subscription_id: int, user_id: str = Depends(get_current_user_id)):
    """Admin only: payment confirmation normally comes from the payment provider."""
    user = get_user(user_id)
    if not user or not user.is_admin:
        raise PermissionError("Admin only", details={"subscription_id": subscription_id})
    return {"data": mark_paid(subscription_id).model_dump(mode="json")}
