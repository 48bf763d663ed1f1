"""User, plan and usage records."""

from datetime import date, datetime
from typing import Optional

from pydantic import EmailStr, Field, field_validator

from ..billing.plans import PlanLimits, PlanMethod, PlanType, get_plan_limits
from .base import WireModel, ensure_utc


class Plan(WireModel):
    """Plan currently assigned to a user.

    A ``pro`` or ``trial`` plan whose ``expires_at`` has passed is treated as
    ``free`` wherever it is evaluated. Nothing rewrites the record when it
    expires.
    """

    type: PlanType = PlanType.FREE
    expires_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    activated_by: Optional[str] = None
    method: Optional[PlanMethod] = None

    _utc = field_validator("expires_at", "activated_at")(ensure_utc)

    def is_expired(self, now: datetime) -> bool:
        if self.type == PlanType.FREE or self.expires_at is None:
            return False
        return self.expires_at < now

    def effective_type(self, now: datetime) -> PlanType:
        return PlanType.FREE if self.is_expired(now) else self.type

    def limits(self, now: datetime) -> PlanLimits:
        return get_plan_limits(self.effective_type(now))


class Usage(WireModel):
    """Metered counters.

    ``scans_today`` only counts for ``last_scan_date`` and
    ``total_cleaned_bytes`` only for the month of ``last_cleanup_date``.
    """

    scans_today: int = Field(default=0, ge=0)
    last_scan_date: Optional[date] = None
    total_cleaned_bytes: int = Field(default=0, ge=0)
    last_cleanup_date: Optional[date] = None

    def scans_on(self, day: date) -> int:
        if self.last_scan_date != day:
            return 0
        return self.scans_today

    def cleaned_in_month(self, day: date) -> int:
        last = self.last_cleanup_date
        # An undated counter predates month tracking and still counts.
        if last is not None and (last.year, last.month) != (day.year, day.month):
            return 0
        return self.total_cleaned_bytes


class User(WireModel):
    """User record owned by the entitlement store."""

    id: str
    email: EmailStr
    display_name: Optional[str] = None
    plan: Plan = Field(default_factory=Plan)
    usage: Usage = Field(default_factory=Usage)
    created_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None

    _utc = field_validator("created_at", "last_active_at")(ensure_utc)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()
