from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class EngineConfig:
    urgent_after_hours: float = 24.0
    high_after_hours: float = 12.0
    week_days: int = 7
    month_days: int = 30
    default_sort_by: str = "created_at"
    default_sort_order: str = "desc"
    legacy_inquiry_statuses: Dict[str, str] = field(
        default_factory=lambda: {
            "viewed": "new",
            "contacted": "responded",
        }
    )
    legacy_request_statuses: Dict[str, str] = field(
        default_factory=lambda: {
            "fulfilled": "closed",
            "cancelled": "closed",
        }
    )


DEFAULT_CONFIG = EngineConfig()
