"""Billing API routes."""

from fastapi import APIRouter, Depends, Request

from ..billing.plans import PLAN_LIMITS
from ..errors import NotFoundError
from .auth import Principal, require_auth

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.get("/plans")
async def get_plans():
    """Get available plans."""
    return {
        plan_type.value: {"limits": limits.to_dict()}
        for plan_type, limits in PLAN_LIMITS.items()
    }


@router.get("/me")
async def get_current_plan(request: Request, principal: Principal = Depends(require_auth)):
    """Get current user's plan, with lazy expiry applied, and its limits."""
    user = await request.app.state.store.get_user(principal.user_id)
    if user is None:
        raise NotFoundError("User not found")

    now = request.app.state.clock.now()
    return {
        "plan": user.plan.effective_type(now).value,
        "expired": user.plan.is_expired(now),
        "record": user.plan.to_wire(),
        "limits": user.plan.limits(now).to_dict(),
    }
