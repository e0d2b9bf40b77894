from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable

from lifecycle.config import DEFAULT_CONFIG, EngineConfig
from lifecycle.data_models import (
    STATUS_DOMAINS,
    EntityType,
    InquiryStatus,
    ListingStatus,
    Record,
    coerce_entity_type,
    localize,
)
from lifecycle.filters import PROFILES, window_start
from lifecycle.transitions import Urgency, urgency


@dataclass(frozen=True)
class CollectionStats:
    entity_type: str
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)
    today: int = 0
    this_week: int = 0
    this_month: int = 0
    urgent: int = 0
    response_rate: int | None = None
    total_value: float | None = None
    average_price: int | None = None
    sold_rate: int | None = None
    active_rate: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _percent(part: int, whole: int) -> int:
    if whole == 0:
        return 0
    return round(part / whole * 100)


def status_counts(records: Iterable[Record], entity_type: Any) -> dict[str, int]:
    et = coerce_entity_type(entity_type)
    counts = {status.value: 0 for status in STATUS_DOMAINS[et]}
    for record in records:
        counts[record.status.value] += 1
    return counts


def response_rate(records: Iterable[Record]) -> int:
    total = responded = 0
    for record in records:
        total += 1
        if record.status is InquiryStatus.RESPONDED:
            responded += 1
    return _percent(responded, total)


def urgent_count(records: Iterable[Record], now: datetime, config: EngineConfig = DEFAULT_CONFIG) -> int:
    return sum(1 for r in records if urgency(r, now, config) is Urgency.URGENT)


def time_buckets(records: Iterable[Record], now: datetime, config: EngineConfig = DEFAULT_CONFIG) -> dict[str, int]:
    now = localize(now)
    starts = {name: window_start(name, now, config) for name in ("today", "week", "month")}
    buckets = {"today": 0, "this_week": 0, "this_month": 0}
    for record in records:
        created = record.created_at
        if created > now:
            continue
        if created >= starts["today"]:
            buckets["today"] += 1
        if created >= starts["week"]:
            buckets["this_week"] += 1
        if created >= starts["month"]:
            buckets["this_month"] += 1
    return buckets


def top_category(records: Iterable[Record], entity_type: Any) -> tuple[str, int] | None:
    """Most frequent non-empty category value, ties broken alphabetically."""
    name = PROFILES[coerce_entity_type(entity_type)].category_field
    counts = Counter(str(r.get(name)) for r in records if r.get(name))
    if not counts:
        return None
    return min(counts.items(), key=lambda item: (-item[1], item[0]))


def aggregate(
    records: Iterable[Record],
    entity_type: Any,
    now: datetime,
    config: EngineConfig = DEFAULT_CONFIG,
) -> CollectionStats:
    """Summary counts over the full, unfiltered collection in one pass."""
    et = coerce_entity_type(entity_type)
    category_field = PROFILES[et].category_field
    now = localize(now)
    starts = {name: window_start(name, now, config) for name in ("today", "week", "month")}

    by_status = {status.value: 0 for status in STATUS_DOMAINS[et]}
    by_category: Counter[str] = Counter()
    total = today = week = month = urgent = 0
    active_value = 0.0
    priced_active = 0

    for record in records:
        total += 1
        by_status[record.status.value] += 1
        category = record.get(category_field)
        if category:
            by_category[str(category)] += 1
        created = record.created_at
        if created <= now:
            today += created >= starts["today"]
            week += created >= starts["week"]
            month += created >= starts["month"]
        if urgency(record, now, config) is Urgency.URGENT:
            urgent += 1
        if et is EntityType.LISTING and record.status is ListingStatus.ACTIVE:
            price = record.get("price")
            if price is not None:
                active_value += price
                priced_active += 1

    stats: dict[str, Any] = {
        "entity_type": et.value,
        "total": total,
        "by_status": by_status,
        "by_category": dict(by_category),
        "today": today,
        "this_week": week,
        "this_month": month,
        "urgent": urgent,
    }
    if et is EntityType.INQUIRY:
        stats["response_rate"] = _percent(by_status[InquiryStatus.RESPONDED.value], total)
    if et is EntityType.LISTING:
        stats["total_value"] = active_value
        stats["average_price"] = round(active_value / priced_active) if priced_active else 0
        stats["sold_rate"] = _percent(by_status[ListingStatus.SOLD.value], total)
        stats["active_rate"] = _percent(by_status[ListingStatus.ACTIVE.value], total)
    return CollectionStats(**stats)
