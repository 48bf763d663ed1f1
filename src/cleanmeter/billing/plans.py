from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import FrozenSet, Optional, Union


class PlanType(str, Enum):
    FREE = "free"
    PRO = "pro"
    TRIAL = "trial"


class PlanDuration(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"
    LIFETIME = "lifetime"


class PlanMethod(str, Enum):
    MANUAL = "manual"
    AUTOMATED = "automated"


class _Unlimited:
    """Sentinel for a limit that is never reached."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"

    def __reduce__(self):
        return "UNLIMITED"


UNLIMITED = _Unlimited()

Limit = Union[int, _Unlimited]


def is_unlimited(limit: Optional[Limit]) -> bool:
    return limit is UNLIMITED


def limit_to_wire(limit: Optional[Limit]) -> Optional[int]:
    """Render a limit for JSON responses; unlimited becomes null."""
    if limit is None or limit is UNLIMITED:
        return None
    return int(limit)


MEBIBYTE = 1024 * 1024

ALL_FEATURES = "*"

FREE_FEATURES = frozenset({
    "smart_scan_basic",
    "system_junk_basic",
    "large_files_view",
    "app_uninstaller_single",
})

PRO_FEATURES = frozenset({
    "smart_scan_advanced",
    "system_junk_full",
    "large_files_delete",
    "app_uninstaller_batch",
    "privacy_cleaner",
    "optimization_tools",
    "malware_scanner",
    "space_lens",
    "automation",
    "scheduled_scans",
})


@dataclass(frozen=True)
class PlanLimits:
    daily_scans: Limit
    cleanup_size_bytes: Limit
    features: FrozenSet[str] = field(default_factory=frozenset)
    batch_operations: bool = False
    automation: bool = False
    priority_support: bool = False

    def allows_feature(self, feature: str) -> bool:
        return ALL_FEATURES in self.features or feature in self.features

    def to_dict(self) -> dict:
        return {
            "dailyScans": limit_to_wire(self.daily_scans),
            "cleanupSizeBytes": limit_to_wire(self.cleanup_size_bytes),
            "features": sorted(self.features),
            "batchOperations": self.batch_operations,
            "automation": self.automation,
            "prioritySupport": self.priority_support,
        }


PLAN_LIMITS: dict[PlanType, PlanLimits] = {
    PlanType.FREE: PlanLimits(
        daily_scans=1,
        cleanup_size_bytes=500 * MEBIBYTE,
        features=FREE_FEATURES,
    ),
    PlanType.PRO: PlanLimits(
        daily_scans=UNLIMITED,
        cleanup_size_bytes=UNLIMITED,
        features=frozenset({ALL_FEATURES}),
        batch_operations=True,
        automation=True,
        priority_support=True,
    ),
    PlanType.TRIAL: PlanLimits(
        daily_scans=UNLIMITED,
        cleanup_size_bytes=UNLIMITED,
        features=frozenset({ALL_FEATURES}),
        batch_operations=True,
        automation=True,
        priority_support=False,
    ),
}

# Fixed offsets, not calendar arithmetic. None means no expiration.
DURATION_OFFSETS: dict[PlanDuration, Optional[timedelta]] = {
    PlanDuration.MONTHLY: timedelta(days=30),
    PlanDuration.ANNUAL: timedelta(days=365),
    PlanDuration.LIFETIME: None,
}

UPGRADABLE_PLANS = frozenset({PlanType.PRO, PlanType.TRIAL})


def get_plan_limits(plan_type: PlanType) -> PlanLimits:
    return PLAN_LIMITS[PlanType(plan_type)]
