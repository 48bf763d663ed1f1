"""Administrative plan management API."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..billing.upgrade import PlanUpgradeWorkflow
from .auth import Principal, require_auth

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


class UpgradeRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_identifier: str
    plan: str
    duration: str
    notes: Optional[str] = None


def get_upgrade_workflow(request: Request) -> PlanUpgradeWorkflow:
    return request.app.state.upgrades


@router.post("/upgrade")
async def upgrade_user_plan(
    body: UpgradeRequest,
    principal: Principal = Depends(require_auth),
    workflow: PlanUpgradeWorkflow = Depends(get_upgrade_workflow)
):
    """Manually upgrade a user's plan. Requires the admin claim."""
    result = await workflow.upgrade(
        actor_id=principal.user_id,
        identifier=body.user_identifier,
        plan=body.plan,
        duration=body.duration,
        notes=body.notes,
        is_admin=principal.is_admin,
    )
    return result.to_dict()
