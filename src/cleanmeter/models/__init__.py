"""Record models."""

from .requests import ContactPreference, ProRequest, RequestStatus, UpgradeLogEntry
from .scan import ScanCategory, ScanItem, ScanProgress, ScanSummary
from .user import Plan, Usage, User

__all__ = [
    "ContactPreference",
    "Plan",
    "ProRequest",
    "RequestStatus",
    "ScanCategory",
    "ScanItem",
    "ScanProgress",
    "ScanSummary",
    "UpgradeLogEntry",
    "Usage",
    "User",
]
