"""Usage metering API."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from ..billing.metering import UsageMeter
from .auth import Principal, require_auth

router = APIRouter(prefix="/api/v1/usage", tags=["usage"])


class TrackUsageRequest(BaseModel):
    action: str
    amount: Optional[int] = None


def get_meter(request: Request) -> UsageMeter:
    return request.app.state.meter


@router.post("/track")
async def track_usage(
    body: TrackUsageRequest,
    principal: Principal = Depends(require_auth),
    meter: UsageMeter = Depends(get_meter)
):
    """Check a metered action against the caller's plan and consume it."""
    decision = await meter.check_and_consume(principal.user_id, body.action, body.amount)
    return decision.to_dict()


@router.get("/me")
async def get_my_usage(
    principal: Principal = Depends(require_auth),
    meter: UsageMeter = Depends(get_meter)
):
    """Current effective usage and limits for the caller."""
    snapshot = await meter.get_usage(principal.user_id)
    return snapshot.to_dict()
