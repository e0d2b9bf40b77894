from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from lifecycle.config import DEFAULT_CONFIG, EngineConfig
from lifecycle.errors import UnknownEntityTypeError, UnknownStatusError


class EntityType(str, Enum):
    INQUIRY = "inquiry"
    REQUEST = "request"
    LISTING = "listing"


class InquiryStatus(str, Enum):
    NEW = "new"
    RESPONDED = "responded"
    CLOSED = "closed"


class RequestStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class ListingStatus(str, Enum):
    ACTIVE = "active"
    HIDDEN = "hidden"
    SOLD = "sold"


class Role(str, Enum):
    BUYER = "buyer"
    DEALER = "dealer"


STATUS_DOMAINS: dict[EntityType, type[Enum]] = {
    EntityType.INQUIRY: InquiryStatus,
    EntityType.REQUEST: RequestStatus,
    EntityType.LISTING: ListingStatus,
}

@dataclass(frozen=True)
class UserContext:
    """The signed-in party, injected by the caller."""

    id: int
    role: Role

    @property
    def is_dealer(self) -> bool:
        return self.role is Role.DEALER


@dataclass(frozen=True, eq=False)
class Record:
    """Normalized Inquiry / CarRequest / Car listing.

    Equality and hashing use ``id`` only; use :func:`same_entity` to also
    compare the entity type.
    """

    id: int
    entity_type: EntityType
    status: Enum
    created_at: datetime
    owner_ref: int
    counterpart_ref: int | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None
    responded_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))
        object.__setattr__(self, "created_at", parse_timestamp(self.created_at))
        for name in ("updated_at", "responded_at"):
            object.__setattr__(self, name, _optional_timestamp(getattr(self, name)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def get(self, name: str, default: Any = None) -> Any:
        if name in _RECORD_FIELDS:
            return getattr(self, name)
        return self.attributes.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "owner_ref": self.owner_ref,
            "counterpart_ref": self.counterpart_ref,
            "attributes": dict(self.attributes),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
        }


_RECORD_FIELDS = frozenset({
    "id", "entity_type", "status", "created_at", "owner_ref",
    "counterpart_ref", "updated_at", "responded_at",
})


def same_entity(a: Record, b: Record) -> bool:
    return a.id == b.id and a.entity_type is b.entity_type


def coerce_entity_type(value: Any) -> EntityType:
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(str(value).lower())
    except ValueError:
        raise UnknownEntityTypeError(value) from None


def status_domain(entity_type: Any) -> type[Enum]:
    return STATUS_DOMAINS[coerce_entity_type(entity_type)]


def coerce_status(entity_type: Any, value: Any, config: EngineConfig = DEFAULT_CONFIG) -> Enum:
    """Map a raw status string (or enum member) into the entity's domain."""
    et = coerce_entity_type(entity_type)
    domain = STATUS_DOMAINS[et]
    if isinstance(value, domain):
        return value
    raw = str(value.value if isinstance(value, Enum) else value).lower()
    if et is EntityType.INQUIRY:
        raw = config.legacy_inquiry_statuses.get(raw, raw)
    elif et is EntityType.REQUEST:
        raw = config.legacy_request_statuses.get(raw, raw)
    try:
        return domain(raw)
    except ValueError:
        raise UnknownStatusError(et.value, value) from None


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def localize(now: datetime | None) -> datetime:
    """Aware reference time; a naive ``now`` is read as local wall-clock time."""
    if now is None:
        return datetime.now(timezone.utc).astimezone()
    return now if now.tzinfo is not None else now.astimezone()


# ── Payload normalizers ─────────────────────────────────────────────


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _as_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    number = _as_float(value)
    return None if number is None else int(number)


def _optional_timestamp(value: Any) -> datetime | None:
    return None if value in (None, "") else parse_timestamp(value)


def _person_fields(payload: Mapping[str, Any], prefix: str) -> dict[str, Any]:
    nested = payload.get(prefix) or {}
    first = _pick(nested, "firstName", "first_name") or ""
    last = _pick(nested, "lastName", "last_name") or ""
    name = " ".join(part for part in (first, last) if part) or _pick(
        payload, f"{prefix}_name", f"{prefix}Name",
    )
    return {
        f"{prefix}_name": name or "",
        f"{prefix}_email": _pick(nested, "email") or _pick(payload, f"{prefix}_email", f"{prefix}Email") or "",
        f"{prefix}_phone": _pick(nested, "phone") or _pick(payload, f"{prefix}_phone", f"{prefix}Phone") or "",
    }


def _inquiry(payload: Mapping[str, Any], config: EngineConfig) -> Record:
    car = payload.get("car") or {}
    attributes: dict[str, Any] = {
        "message": payload.get("message") or "",
        "car_id": _as_int(_pick(payload, "car_id", "carId")),
        "car_make": _pick(car, "make") or _pick(payload, "car_make", "carMake") or "",
        "car_model": _pick(car, "model") or _pick(payload, "car_model", "carModel") or "",
        "car_year": _as_int(_pick(car, "year") or _pick(payload, "car_year", "carYear")),
        "car_price": _as_float(_pick(car, "price") or _pick(payload, "car_price", "carPrice")),
        "dealer_business_name": _pick(payload.get("dealer") or {}, "businessName")
        or _pick(payload, "dealer_business_name") or "",
    }
    attributes.update(_person_fields(payload, "buyer"))
    return Record(
        id=int(payload["id"]),
        entity_type=EntityType.INQUIRY,
        status=coerce_status(EntityType.INQUIRY, payload.get("status") or "new", config),
        created_at=parse_timestamp(_pick(payload, "created_at", "createdAt")),
        owner_ref=int(_pick(payload, "buyer_id", "buyerId")),
        counterpart_ref=_as_int(_pick(payload, "dealer_id", "dealerId")),
        attributes=attributes,
        updated_at=_optional_timestamp(_pick(payload, "updated_at", "updatedAt")),
        responded_at=_optional_timestamp(_pick(payload, "responded_at", "respondedAt")),
    )


def _request(payload: Mapping[str, Any], config: EngineConfig) -> Record:
    attributes: dict[str, Any] = {
        "make": payload.get("make") or "",
        "model": payload.get("model") or "",
        "year_min": _as_int(_pick(payload, "year_min", "yearMin")),
        "year_max": _as_int(_pick(payload, "year_max", "yearMax")),
        "price_max": _as_float(_pick(payload, "price_max", "priceMax")),
        "requirements": payload.get("requirements") or "",
    }
    attributes.update(_person_fields(payload, "buyer"))
    return Record(
        id=int(payload["id"]),
        entity_type=EntityType.REQUEST,
        status=coerce_status(EntityType.REQUEST, payload.get("status") or "active", config),
        created_at=parse_timestamp(_pick(payload, "created_at", "createdAt")),
        owner_ref=int(_pick(payload, "buyer_id", "buyerId")),
        counterpart_ref=None,
        attributes=attributes,
        updated_at=_optional_timestamp(_pick(payload, "updated_at", "updatedAt")),
    )


def _listing(payload: Mapping[str, Any], config: EngineConfig) -> Record | None:
    raw_status = str(payload.get("status") or "active").lower()
    if raw_status == "deleted":
        return None
    available = _pick(payload, "is_available", "isAvailable")
    if raw_status == "active" and available is False:
        raw_status = "hidden"
    attributes: dict[str, Any] = {
        "make": payload.get("make") or "",
        "model": payload.get("model") or "",
        "year": _as_int(payload.get("year")),
        "price": _as_float(payload.get("price")),
        "mileage": _as_int(payload.get("mileage")),
        "fuel_type": _pick(payload, "fuel_type", "fuelType") or "",
        "transmission": payload.get("transmission") or "",
        "body_type": _pick(payload, "body_type", "bodyType") or "",
        "condition": payload.get("condition") or "",
        "color": payload.get("color") or "",
        "city": payload.get("city") or "",
        "description": payload.get("description") or "",
        "is_featured": bool(_pick(payload, "is_featured", "isFeatured")),
    }
    return Record(
        id=int(payload["id"]),
        entity_type=EntityType.LISTING,
        status=coerce_status(EntityType.LISTING, raw_status, config),
        created_at=parse_timestamp(_pick(payload, "created_at", "createdAt")),
        owner_ref=int(_pick(payload, "dealer_id", "dealerId", "dealer_user_id")),
        counterpart_ref=None,
        attributes=attributes,
        updated_at=_optional_timestamp(_pick(payload, "updated_at", "updatedAt")),
    )


_NORMALIZERS = {
    EntityType.INQUIRY: _inquiry,
    EntityType.REQUEST: _request,
    EntityType.LISTING: _listing,
}


def record_from_payload(
    entity_type: Any,
    payload: Mapping[str, Any],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Record | None:
    """Build a record from an API payload (snake_case or camelCase).

    Returns None for listings the server reports as deleted.
    """
    return _NORMALIZERS[coerce_entity_type(entity_type)](payload, config)


def normalize_collection(
    entity_type: Any,
    payloads: Iterable[Mapping[str, Any]],
    config: EngineConfig = DEFAULT_CONFIG,
) -> list[Record]:
    records = (record_from_payload(entity_type, p, config) for p in payloads)
    return [r for r in records if r is not None]
