"""Manual plan upgrades performed by administrators."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from ..clock import Clock
from ..errors import (
    CleanmeterError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from ..logging import get_logger
from ..models.requests import ProRequest, RequestStatus, UpgradeLogEntry
from ..models.user import Plan, User
from ..storage.base import EntitlementStore
from .plans import DURATION_OFFSETS, UPGRADABLE_PLANS, PlanDuration, PlanMethod, PlanType

logger = get_logger(__name__)


@dataclass
class UpgradeResult:
    success: bool
    user_id: str
    message: str
    expires_at: Optional[datetime] = None
    converted_request_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "userId": self.user_id,
            "message": self.message,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "convertedRequestId": self.converted_request_id,
        }


def compute_expiration(duration: PlanDuration, now: datetime) -> Optional[datetime]:
    """Fixed-offset expiry; lifetime plans never expire."""
    offset = DURATION_OFFSETS[PlanDuration(duration)]
    return now + offset if offset is not None else None


class PlanUpgradeWorkflow:
    """Replace a user's plan, audit it and reconcile their pending Pro request.

    The three writes are not one transaction. A failed audit write rolls the
    plan back to what it was before the upgrade. A failed request conversion
    leaves plan and audit entry in place; rerunning the upgrade converts the
    request then.
    """

    def __init__(self, store: EntitlementStore, clock: Clock):
        self.store = store
        self.clock = clock

    async def upgrade(
        self,
        actor_id: str,
        identifier: str,
        plan: Union[PlanType, str],
        duration: Union[PlanDuration, str],
        notes: Optional[str] = None,
        *,
        is_admin: bool
    ) -> UpgradeResult:
        """Upgrade the user named by ``identifier`` (email or id).

        Raises:
            PermissionDeniedError: Caller is not an administrator
            InvalidArgumentError: Unknown plan or duration
            NotFoundError: Identifier does not resolve to a user
            InternalError: A storage write failed
        """
        if not is_admin:
            raise PermissionDeniedError("Only admins can upgrade user plans")
        if not actor_id:
            raise PermissionDeniedError("Upgrade requires an authenticated actor")

        plan_type = _parse_plan(plan)
        plan_duration = _parse_duration(duration)
        if not identifier or not identifier.strip():
            raise InvalidArgumentError("A user email or id is required")
        identifier = identifier.strip()

        user = await self._resolve_user(identifier)

        now = self.clock.now()
        new_plan = Plan(
            type=plan_type,
            expires_at=compute_expiration(plan_duration, now),
            activated_at=now,
            activated_by=actor_id,
            method=PlanMethod.MANUAL,
        )

        previous_plan = await self._guard(
            self.store.atomic_update(
                user.id,
                lambda current: (current.model_copy(update={"plan": new_plan}), current.plan),
            ),
            "plan update",
        )
        logger.info(
            "plan_replaced",
            user_id=user.id,
            plan=plan_type.value,
            duration=plan_duration.value,
            activated_by=actor_id,
        )

        entry = UpgradeLogEntry(
            user_id=user.id,
            identifier=identifier,
            user_email=user.email,
            plan=plan_type,
            duration=plan_duration,
            activated_by=actor_id,
            notes=notes,
            timestamp=now,
        )
        try:
            await self.store.append_upgrade_log(entry)
        except Exception as e:
            restored = await self._restore_plan(user.id, new_plan, previous_plan)
            logger.error("upgrade_log_failed", user_id=user.id, error=str(e), plan_restored=restored)
            raise InternalError(
                "Failed to upgrade user plan",
                details={"step": "audit log", "plan_restored": restored},
            ) from e

        try:
            converted = await self._convert_pending_request(user.email, now)
        except Exception as e:
            logger.error("pro_request_conversion_failed", user_id=user.id, error=str(e))
            raise InternalError(
                "Plan upgraded but the pending Pro request could not be converted",
                details={"step": "request conversion", "plan_restored": False},
            ) from e

        if converted:
            logger.info("pro_request_converted", request_id=converted.id, user_id=user.id)

        return UpgradeResult(
            success=True,
            user_id=user.id,
            message=f"Successfully upgraded {user.email} to {plan_type.value} plan",
            expires_at=new_plan.expires_at,
            converted_request_id=converted.id if converted else None,
        )

    async def _resolve_user(self, identifier: str) -> User:
        if "@" in identifier:
            user = await self.store.get_user_by_email(identifier)
        else:
            user = await self.store.get_user(identifier)
        if user is None:
            raise NotFoundError(f"No user matches {identifier}")
        return user

    async def _convert_pending_request(self, email: str, now: datetime) -> Optional[ProRequest]:
        """Convert the earliest pending request for ``email``, if any."""
        pending = await self.store.query_pro_requests(email=email, status=RequestStatus.PENDING)
        for request in pending:
            converted = await self.store.compare_and_set_request_status(
                request.id,
                RequestStatus.PENDING,
                RequestStatus.CONVERTED,
                converted_at=now,
            )
            if converted is not None:
                return converted
            # Lost a race with another status change; try the next one.
        return None

    async def _restore_plan(self, user_id: str, written: Plan, previous: Plan) -> bool:
        def transform(current: User):
            if current.plan != written:
                # Someone replaced the plan since; leave their write alone.
                return None, False
            return current.model_copy(update={"plan": previous}), True

        try:
            return await self.store.atomic_update(user_id, transform)
        except Exception as e:
            logger.error("plan_restore_failed", user_id=user_id, error=str(e))
            return False

    @staticmethod
    async def _guard(awaitable, step: str):
        try:
            return await awaitable
        except CleanmeterError:
            raise
        except Exception as e:
            raise InternalError(f"Failed to upgrade user plan ({step})") from e


def _parse_plan(plan: Union[PlanType, str]) -> PlanType:
    try:
        plan_type = PlanType(plan)
    except ValueError:
        raise InvalidArgumentError(f"Unknown plan: {plan}") from None
    if plan_type not in UPGRADABLE_PLANS:
        raise InvalidArgumentError(f"Cannot upgrade to plan: {plan_type.value}")
    return plan_type


def _parse_duration(duration: Union[PlanDuration, str]) -> PlanDuration:
    try:
        return PlanDuration(duration)
    except ValueError:
        raise InvalidArgumentError(f"Unknown duration: {duration}") from None
