"""Pro plan requests and the upgrade audit trail."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import EmailStr, Field, field_validator

from ..billing.plans import PlanDuration, PlanType
from .base import WireModel, ensure_utc


class ContactPreference(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    WHATSAPP = "whatsapp"


class RequestStatus(str, Enum):
    PENDING = "pending"
    CONTACTED = "contacted"
    CONVERTED = "converted"
    DECLINED = "declined"


def _new_id() -> str:
    return str(uuid.uuid4())


class ProRequest(WireModel):
    """Request for a Pro plan submitted through the intake form."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    email: EmailStr
    preferred_contact: ContactPreference
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    country: Optional[str] = None
    message: Optional[str] = None
    status: RequestStatus = RequestStatus.PENDING
    submitted_at: datetime
    converted_at: Optional[datetime] = None

    _utc = field_validator("submitted_at", "converted_at")(ensure_utc)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UpgradeLogEntry(WireModel):
    """Append-only record of a manual plan change."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    identifier: str
    user_email: str
    plan: PlanType
    duration: PlanDuration
    activated_by: str
    notes: Optional[str] = None
    timestamp: datetime

    _utc = field_validator("timestamp")(ensure_utc)
