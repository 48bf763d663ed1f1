"""Usage metering against plan limits."""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple, Union

from ..clock import Clock
from ..errors import InvalidArgumentError, NotFoundError
from ..logging import get_logger
from ..models.user import Plan, User
from ..storage.base import EntitlementStore
from .plans import MEBIBYTE, UNLIMITED, Limit, PlanType, is_unlimited, limit_to_wire

logger = get_logger(__name__)


class MeteredAction(str, Enum):
    SCAN = "scan"
    CLEANUP = "cleanup"


@dataclass
class Decision:
    """Outcome of a metering check. A denial is a normal result, not an error."""

    allowed: bool
    limit: Optional[Limit] = None
    used: Optional[int] = None
    remaining: Optional[int] = None
    message: Optional[str] = None

    @property
    def unlimited(self) -> bool:
        return is_unlimited(self.limit)

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "limit": limit_to_wire(self.limit),
            "unlimited": self.unlimited,
            "used": self.used,
            "remaining": self.remaining,
            "message": self.message,
        }


@dataclass
class UsageSnapshot:
    """Read-only view of a user's effective counters and limits."""

    user_id: str
    plan: PlanType
    scans_today: int
    daily_scans: Limit
    cleaned_this_month: int
    cleanup_size_bytes: Limit

    @property
    def cleanup_remaining(self) -> Optional[int]:
        if is_unlimited(self.cleanup_size_bytes):
            return None
        return max(0, self.cleanup_size_bytes - self.cleaned_this_month)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "plan": self.plan.value,
            "scansToday": self.scans_today,
            "dailyScans": limit_to_wire(self.daily_scans),
            "cleanedThisMonth": self.cleaned_this_month,
            "cleanupSizeBytes": limit_to_wire(self.cleanup_size_bytes),
            "cleanupRemaining": self.cleanup_remaining,
        }


class UsageMeter:
    """Decide whether a metered action is allowed and consume it atomically.

    The limit check and the counter update run inside a single
    ``EntitlementStore.atomic_update`` call, so concurrent checks for the
    same user are serialised and the cap is never exceeded.
    """

    def __init__(self, store: EntitlementStore, clock: Clock):
        self.store = store
        self.clock = clock

    async def check_and_consume(
        self,
        user_id: str,
        action: Union[MeteredAction, str],
        amount: Optional[int] = None
    ) -> Decision:
        """Check a metered action against the user's plan and consume it.

        Args:
            user_id: Opaque user identifier
            action: ``scan`` or ``cleanup``; anything else is allowed unmetered
            amount: Bytes to clean, required for ``cleanup``

        Returns:
            Decision with the limit and the usage after the check

        Raises:
            InvalidArgumentError: Cleanup without a non-negative amount
            NotFoundError: No such user
            InternalError: Storage failure
        """
        metered = _parse_action(action)
        if metered == MeteredAction.CLEANUP:
            if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
                raise InvalidArgumentError(
                    "Cleanup requires a non-negative byte amount",
                    details={"amount": amount},
                )

        now = self.clock.now()
        today = self.clock.today()

        def transform(user: User) -> Tuple[Optional[User], Decision]:
            if user.plan.effective_type(now) == PlanType.PRO:
                return None, Decision(allowed=True, limit=UNLIMITED)

            if metered is None:
                return None, Decision(allowed=True)

            limits = user.plan.limits(now)
            if metered == MeteredAction.SCAN:
                return _consume_scan(user, limits.daily_scans, today, now)
            return _consume_cleanup(user, limits.cleanup_size_bytes, amount, today, now)

        decision = await self.store.atomic_update(user_id, transform)

        if metered is None:
            logger.warning("unmetered_action", user_id=user_id, action=str(action))
        elif decision.allowed:
            logger.info(
                "usage_consumed",
                user_id=user_id,
                action=metered.value,
                used=decision.used,
                limit=limit_to_wire(decision.limit),
            )
        else:
            decision.message = format_limit_message(decision, metered)
            logger.info(
                "usage_denied",
                user_id=user_id,
                action=metered.value,
                used=decision.used,
                limit=limit_to_wire(decision.limit),
            )
        return decision

    async def get_usage(self, user_id: str) -> UsageSnapshot:
        """Return effective usage with stale counters read as zero."""
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        now = self.clock.now()
        today = self.clock.today()
        limits = user.plan.limits(now)
        return UsageSnapshot(
            user_id=user.id,
            plan=user.plan.effective_type(now),
            scans_today=user.usage.scans_on(today),
            daily_scans=limits.daily_scans,
            cleaned_this_month=user.usage.cleaned_in_month(today),
            cleanup_size_bytes=limits.cleanup_size_bytes,
        )


def _parse_action(action: Union[MeteredAction, str]) -> Optional[MeteredAction]:
    try:
        return MeteredAction(action)
    except ValueError:
        return None


def _consume_scan(
    user: User,
    limit: Limit,
    today: date,
    now: datetime
) -> Tuple[Optional[User], Decision]:
    if is_unlimited(limit):
        return None, Decision(allowed=True, limit=UNLIMITED)

    # A counter stamped with another day reads as zero, so a new day resets
    # and increments in the same write.
    used = user.usage.scans_on(today)
    if used >= limit:
        return None, Decision(allowed=False, limit=limit, used=used)

    usage = user.usage.model_copy(update={"scans_today": used + 1, "last_scan_date": today})
    updated = user.model_copy(update={"usage": usage, "last_active_at": now})
    return updated, Decision(allowed=True, limit=limit, used=used + 1)


def _consume_cleanup(
    user: User,
    limit: Limit,
    amount: int,
    today: date,
    now: datetime
) -> Tuple[Optional[User], Decision]:
    if is_unlimited(limit):
        return None, Decision(allowed=True, limit=UNLIMITED)

    used = user.usage.cleaned_in_month(today)
    projected = used + amount
    if projected > limit:
        return None, Decision(
            allowed=False,
            limit=limit,
            used=used,
            remaining=max(0, limit - used),
        )

    usage = user.usage.model_copy(update={
        "total_cleaned_bytes": projected,
        "last_cleanup_date": today,
    })
    updated = user.model_copy(update={"usage": usage, "last_active_at": now})
    return updated, Decision(
        allowed=True,
        limit=limit,
        used=projected,
        remaining=limit - projected,
    )


def can_use_feature(plan: Plan, feature: str, now: datetime) -> bool:
    """Feature gate for the plan in effect at ``now``; expired plans gate as free."""
    return plan.limits(now).allows_feature(feature)


def format_limit_message(decision: Decision, action: Union[MeteredAction, str]) -> str:
    """Human readable explanation for a denied decision."""
    if decision.allowed:
        return ""

    metered = _parse_action(action)
    if metered == MeteredAction.SCAN:
        return (
            f"You've reached your daily scan limit ({decision.used}/{limit_to_wire(decision.limit)}). "
            "Upgrade to Pro for unlimited scans."
        )
    if metered == MeteredAction.CLEANUP:
        remaining_mb = round((decision.remaining or 0) / MEBIBYTE)
        return (
            f"You've reached your monthly cleanup limit. {remaining_mb}MB remaining. "
            "Upgrade to Pro for unlimited cleanup."
        )
    return "Limit reached. Upgrade to Pro for unlimited access."
