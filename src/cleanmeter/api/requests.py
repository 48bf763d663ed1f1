"""Pro plan request intake API."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..billing.requests import ProRequestService
from .auth import Principal, require_auth

router = APIRouter(prefix="/api/v1/pro-requests", tags=["pro-requests"])


class SubmitProRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str = ""
    preferred_contact: str = ""
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    country: Optional[str] = None
    message: Optional[str] = None


def get_request_service(request: Request) -> ProRequestService:
    return request.app.state.pro_requests


@router.post("")
async def submit_pro_request(
    body: SubmitProRequest,
    principal: Principal = Depends(require_auth),
    service: ProRequestService = Depends(get_request_service)
):
    """Submit a request to be contacted about a Pro plan."""
    created = await service.submit(
        user_id=principal.user_id,
        email=body.email,
        preferred_contact=body.preferred_contact,
        phone=body.phone,
        whatsapp=body.whatsapp,
        country=body.country,
        message=body.message,
    )
    return {
        "success": True,
        "requestId": created.id,
        "message": "Pro plan request submitted successfully",
    }
