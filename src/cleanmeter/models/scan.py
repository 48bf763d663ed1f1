"""Payloads streamed by a disk scan."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from .base import WireModel


class ScanProgress(WireModel):
    """One progress event. ``percentage`` is clamped into [0, 100]."""

    percentage: float
    phase: str
    current_item: Optional[str] = None
    items_scanned: int = 0
    total_items: Optional[int] = None

    @field_validator("percentage")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return min(100.0, max(0.0, float(value)))


class ScanItem(WireModel):
    path: str
    size: int
    type: str
    last_modified: Optional[datetime] = None
    can_delete: bool = False


class ScanCategory(WireModel):
    id: str
    type: str
    name: str
    description: str = ""
    size: int = 0
    item_count: int = 0
    items: List[ScanItem] = Field(default_factory=list)


class ScanSummary(WireModel):
    """Final payload of a completed scan."""

    total_space: int = 0
    breakdown: Dict[str, ScanCategory] = Field(default_factory=dict)
    item_count: int = 0
    scan_time_ms: int = 0
    free_space: Optional[int] = None
    total_disk_space: Optional[int] = None

    @property
    def categories(self) -> List[ScanCategory]:
        return list(self.breakdown.values())

    @classmethod
    def from_categories(cls, categories: List[ScanCategory], **kwargs) -> "ScanSummary":
        return cls(
            breakdown={category.id: category for category in categories},
            total_space=sum(category.size for category in categories),
            item_count=sum(category.item_count for category in categories),
            **kwargs,
        )
