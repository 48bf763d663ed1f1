"""Pro plan request intake."""

from typing import List, Optional, Union

from pydantic import ValidationError

from ..clock import Clock
from ..errors import InvalidArgumentError, PermissionDeniedError
from ..logging import get_logger
from ..models.requests import ContactPreference, ProRequest, RequestStatus
from ..storage.base import EntitlementStore

logger = get_logger(__name__)


class ProRequestService:
    """Create and list Pro plan requests."""

    def __init__(self, store: EntitlementStore, clock: Clock):
        self.store = store
        self.clock = clock

    async def submit(
        self,
        user_id: Optional[str],
        email: str,
        preferred_contact: Union[ContactPreference, str],
        phone: Optional[str] = None,
        whatsapp: Optional[str] = None,
        country: Optional[str] = None,
        message: Optional[str] = None
    ) -> ProRequest:
        """Record a pending Pro request for the authenticated user."""
        if not user_id:
            raise PermissionDeniedError("Must be logged in to request Pro plan")
        if not email or not preferred_contact:
            raise InvalidArgumentError("Email and preferred contact method are required")

        try:
            request = ProRequest(
                user_id=user_id,
                email=email,
                preferred_contact=preferred_contact,
                phone=phone or None,
                whatsapp=whatsapp or None,
                country=country or None,
                message=message or None,
                status=RequestStatus.PENDING,
                submitted_at=self.clock.now(),
            )
        except ValidationError as e:
            raise InvalidArgumentError(
                "Invalid Pro request",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e

        await self.store.add_pro_request(request)
        logger.info(
            "pro_request_submitted",
            request_id=request.id,
            user_id=user_id,
            preferred_contact=request.preferred_contact.value,
        )
        return request

    async def list_pending(self, email: Optional[str] = None) -> List[ProRequest]:
        """Pending requests in submission order."""
        return await self.store.query_pro_requests(email=email, status=RequestStatus.PENDING)
