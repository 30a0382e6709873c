"""
partyplanner/api/plans.py
Plan catalog API.
"""

from fastapi import APIRouter, Depends

from partyplanner.core.auth import get_current_user_id
from partyplanner.core.errors import NotFoundError
from partyplanner.features.plans.service import get_plan, list_active_plans

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("")
async def list_plans_endpoint(user_id: str = Depends(get_current_user_id)):
    """Plans the caller can buy (consumed trials hidden)."""
    plans = list_active_plans(user_id)
    return {"data": [p.model_dump(mode="json") for p in plans], "count": len(plans)}


@router.get("/{plan_id}")
async def get_plan_endpoint(plan_id: str):
    plan = get_plan(plan_id)
    if not plan or not plan.is_active:
        raise NotFoundError(f"Plan {plan_id} not found", details={"plan_id": plan_id})
    return {"data": plan.model_dump(mode="json")}
