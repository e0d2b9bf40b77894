"""Faceted filtering and deterministic sorting over in-memory record collections.

Every facet of a :class:`FilterSpec` contributes one predicate; the final
predicate is their AND. Sorting always breaks ties by ``id`` ascending so
repeated calls over the same input give the same order.
"""

from __future__ import annotations

import locale
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from functools import cmp_to_key
from typing import Any, Callable, Iterable, Literal, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from lifecycle.config import DEFAULT_CONFIG, EngineConfig
from lifecycle.data_models import EntityType, Record, coerce_entity_type, coerce_status, localize
from lifecycle.transitions import Urgency, urgency

Predicate = Callable[[Record], bool]
Comparator = Callable[[Record, Record], int]

DateRange = Literal["today", "week", "month", "all"]
Priority = Literal["urgent", "high", "normal", "all"]
SortOrder = Literal["asc", "desc"]


def _alias(name: str, camel: str) -> Any:
    return Field(default=None, validation_alias=AliasChoices(name, camel))


class FilterSpec(BaseModel):
    """Recognized filter options. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    search: str | None = None
    status: str | None = None
    date_range: DateRange | None = _alias("date_range", "dateRange")
    category: str | None = None
    priority: Priority | None = None
    sort_by: str | None = _alias("sort_by", "sortBy")
    sort_order: SortOrder | None = _alias("sort_order", "sortOrder")

    price_min: float | None = _alias("price_min", "priceMin")
    price_max: float | None = _alias("price_max", "priceMax")
    year_min: int | None = _alias("year_min", "yearMin")
    year_max: int | None = _alias("year_max", "yearMax")
    mileage_max: int | None = _alias("mileage_max", "mileageMax")
    make: str | None = None
    model: str | None = None
    fuel_type: str | None = _alias("fuel_type", "fuelType")
    body_type: str | None = _alias("body_type", "bodyType")
    city: str | None = None

    @classmethod
    def from_options(cls, options: FilterSpec | Mapping[str, Any] | None) -> FilterSpec:
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(dict(options))


@dataclass(frozen=True)
class EntityProfile:
    search_fields: tuple[str, ...]
    category_field: str
    price_field: str | None = None
    year_field: str | None = None
    mileage_field: str | None = None
    aliases: Mapping[str, str] = field(default_factory=dict)


PROFILES: dict[EntityType, EntityProfile] = {
    EntityType.INQUIRY: EntityProfile(
        search_fields=("message", "buyer_name", "buyer_email", "car_make", "car_model"),
        category_field="car_make",
        price_field="car_price",
        year_field="car_year",
        aliases={"make": "car_make", "model": "car_model", "price": "car_price", "year": "car_year"},
    ),
    EntityType.REQUEST: EntityProfile(
        search_fields=("make", "model", "requirements", "buyer_name", "buyer_email"),
        category_field="make",
        price_field="price_max",
        year_field="year_min",
    ),
    EntityType.LISTING: EntityProfile(
        search_fields=("make", "model", "description", "city", "color"),
        category_field="body_type",
        price_field="price",
        year_field="year",
        mileage_field="mileage",
    ),
}

_SORT_ALIASES = {"date": "created_at", "priority": "urgency"}
_URGENCY_RANK = {Urgency.URGENT: 2, Urgency.HIGH: 1, Urgency.NORMAL: 0}
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _resolve_field(profile: EntityProfile, name: str) -> str:
    snake = _snake(name)
    snake = _SORT_ALIASES.get(snake, snake)
    return profile.aliases.get(snake, snake)


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in ("", "all"))


# ── Predicates ──────────────────────────────────────────────────────


def window_start(date_range: str, now: datetime, config: EngineConfig = DEFAULT_CONFIG) -> datetime | None:
    now = localize(now)
    if date_range == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range == "week":
        return now - timedelta(days=config.week_days)
    if date_range == "month":
        return now - timedelta(days=config.month_days)
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _search(fields: tuple[str, ...], query: str) -> Predicate:
    needle = query.strip().casefold()

    def matches(record: Record) -> bool:
        return any(needle in _text(record.get(name)).casefold() for name in fields)

    return matches


def _equals(name: str, wanted: str) -> Predicate:
    target = wanted.strip().casefold()
    return lambda record: _text(record.get(name)).casefold() == target


def _in_range(name: str, low: float | None, high: float | None) -> Predicate:
    def matches(record: Record) -> bool:
        value = record.get(name)
        if value is None:
            return False
        if low is not None and value < low:
            return False
        if high is not None and value > high:
            return False
        return True

    return matches


def build_predicate(
    spec: FilterSpec | Mapping[str, Any] | None,
    entity_type: Any,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Predicate:
    spec = FilterSpec.from_options(spec)
    et = coerce_entity_type(entity_type)
    profile = PROFILES[et]
    now = localize(now)
    predicates: list[Predicate] = []

    # free text: "all" is a literal search term here
    if spec.search and spec.search.strip():
        predicates.append(_search(profile.search_fields, spec.search))

    if not _is_unset(spec.status):
        wanted = coerce_status(et, spec.status.strip(), config)
        predicates.append(lambda record: record.status is wanted)

    if not _is_unset(spec.date_range):
        start = window_start(spec.date_range, now, config)
        predicates.append(lambda record: start <= record.created_at <= now)

    if not _is_unset(spec.category):
        predicates.append(_equals(profile.category_field, spec.category))

    if not _is_unset(spec.priority):
        level = Urgency(spec.priority)
        predicates.append(lambda record: urgency(record, now, config) is level)

    ranges = (
        (profile.price_field, spec.price_min, spec.price_max),
        (profile.year_field, spec.year_min, spec.year_max),
        (profile.mileage_field, None, spec.mileage_max),
    )
    for name, low, high in ranges:
        if name is not None and (low is not None or high is not None):
            predicates.append(_in_range(name, low, high))

    for option in ("make", "model", "fuel_type", "body_type", "city"):
        value = getattr(spec, option)
        if not _is_unset(value):
            predicates.append(_equals(profile.aliases.get(option, option), value))

    def combined(record: Record) -> bool:
        return all(p(record) for p in predicates)

    return combined


# ── Sorting ─────────────────────────────────────────────────────────


def _collate(a: str, b: str) -> int:
    ka, kb = locale.strxfrm(a.casefold()), locale.strxfrm(b.casefold())
    return (ka > kb) - (ka < kb)


def _compare_values(a: Any, b: Any) -> int:
    if isinstance(a, Enum):
        a = a.value
    if isinstance(b, Enum):
        b = b.value
    if isinstance(a, str) and isinstance(b, str):
        return _collate(a, b)
    try:
        return (a > b) - (a < b)
    except TypeError:
        return _collate(str(a), str(b))


def build_comparator(
    spec: FilterSpec | Mapping[str, Any] | None,
    entity_type: Any,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> Comparator:
    """Comparator for the requested sort key, falling back to ``id`` ascending.

    Missing values sort last in either direction; ``sort_order`` only flips
    the primary key.
    """
    spec = FilterSpec.from_options(spec)
    profile = PROFILES[coerce_entity_type(entity_type)]
    name = _resolve_field(profile, spec.sort_by or config.default_sort_by)
    descending = (spec.sort_order or config.default_sort_order) == "desc"
    now = localize(now)

    def value_of(record: Record) -> Any:
        if name == "urgency":
            return _URGENCY_RANK[urgency(record, now, config)]
        return record.get(name)

    def compare(a: Record, b: Record) -> int:
        va, vb = value_of(a), value_of(b)
        if va is None or vb is None:
            primary = (va is None) - (vb is None)
        else:
            primary = _compare_values(va, vb)
            if descending:
                primary = -primary
        if primary:
            return primary
        return (a.id > b.id) - (a.id < b.id)

    return compare


def sort_records(
    records: Iterable[Record],
    spec: FilterSpec | Mapping[str, Any] | None,
    entity_type: Any,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[Record]:
    return sorted(records, key=cmp_to_key(build_comparator(spec, entity_type, now, config)))


def apply_filters(
    records: Iterable[Record],
    spec: FilterSpec | Mapping[str, Any] | None = None,
    entity_type: Any = None,
    now: datetime | None = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[Record]:
    """Filtered, ordered copy of ``records``; the input is never modified."""
    items = list(records)
    if entity_type is None:
        if not items:
            return []
        entity_type = items[0].entity_type
    spec = FilterSpec.from_options(spec)
    now = localize(now)
    predicate = build_predicate(spec, entity_type, now, config)
    return sort_records((r for r in items if predicate(r)), spec, entity_type, now, config)
