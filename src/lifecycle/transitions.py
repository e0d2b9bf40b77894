from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from lifecycle.config import DEFAULT_CONFIG, EngineConfig
from lifecycle.data_models import (
    STATUS_DOMAINS,
    EntityType,
    InquiryStatus,
    ListingStatus,
    Record,
    RequestStatus,
    coerce_entity_type,
    localize,
)
from lifecycle.errors import InvalidTransitionError


class Action(str, Enum):
    RESPOND = "respond"
    CLOSE = "close"
    REOPEN = "reopen"
    MARK_SOLD = "mark_sold"
    HIDE = "hide"
    SHOW = "show"


class Urgency(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"


TRANSITIONS: dict[EntityType, dict[tuple[Enum, Action], Enum]] = {
    EntityType.INQUIRY: {
        (InquiryStatus.NEW, Action.RESPOND): InquiryStatus.RESPONDED,
        (InquiryStatus.NEW, Action.CLOSE): InquiryStatus.CLOSED,
        (InquiryStatus.RESPONDED, Action.CLOSE): InquiryStatus.CLOSED,
    },
    EntityType.REQUEST: {
        (RequestStatus.ACTIVE, Action.CLOSE): RequestStatus.CLOSED,
        (RequestStatus.CLOSED, Action.REOPEN): RequestStatus.ACTIVE,
    },
    EntityType.LISTING: {
        (ListingStatus.ACTIVE, Action.MARK_SOLD): ListingStatus.SOLD,
        (ListingStatus.HIDDEN, Action.MARK_SOLD): ListingStatus.SOLD,
        (ListingStatus.ACTIVE, Action.HIDE): ListingStatus.HIDDEN,
        (ListingStatus.HIDDEN, Action.SHOW): ListingStatus.ACTIVE,
    },
}


def legal_pairs(entity_type: Any) -> frozenset[tuple[Enum, Enum]]:
    table = TRANSITIONS[coerce_entity_type(entity_type)]
    return frozenset((current, target) for (current, _), target in table.items())


def allowed_actions(record: Record) -> list[Action]:
    table = TRANSITIONS[record.entity_type]
    return [action for (current, action) in table if current is record.status]


def allowed_targets(record: Record) -> list[Enum]:
    table = TRANSITIONS[record.entity_type]
    return [target for (current, _), target in table.items() if current is record.status]


def _target_in_domain(record: Record, target: Any) -> Enum | None:
    domain = STATUS_DOMAINS[record.entity_type]
    if isinstance(target, domain):
        return target
    raw = target.value if isinstance(target, Enum) else target
    try:
        return domain(str(raw).lower())
    except ValueError:
        return None


def can_transition(record: Record, target: Any) -> bool:
    resolved = _target_in_domain(record, target)
    if resolved is None:
        return False
    if resolved is record.status:
        return True
    return (record.status, resolved) in legal_pairs(record.entity_type)


def _moved(record: Record, target: Enum, now: datetime | None) -> Record:
    ts = now or datetime.now(timezone.utc)
    changes: dict[str, Any] = {"status": target, "updated_at": ts}
    if target is InquiryStatus.RESPONDED:
        changes["responded_at"] = ts
    return dataclasses.replace(record, **changes)


def transition(record: Record, target: Any, now: datetime | None = None) -> Record:
    """Return a copy of ``record`` moved to ``target``.

    Same-status requests return ``record`` itself. Raises
    InvalidTransitionError for targets outside the entity's domain or its
    legal set.
    """
    resolved = _target_in_domain(record, target)
    if resolved is None:
        raise InvalidTransitionError(record.entity_type.value, record.status.value, str(target))
    if resolved is record.status:
        return record
    if (record.status, resolved) not in legal_pairs(record.entity_type):
        raise InvalidTransitionError(record.entity_type.value, record.status.value, resolved.value)
    return _moved(record, resolved, now)


def apply_action(record: Record, action: Any, now: datetime | None = None) -> Record:
    try:
        resolved = Action(action.value if isinstance(action, Enum) else str(action).lower())
    except ValueError:
        raise InvalidTransitionError(record.entity_type.value, record.status.value, str(action)) from None
    target = TRANSITIONS[record.entity_type].get((record.status, resolved))
    if target is None:
        raise InvalidTransitionError(record.entity_type.value, record.status.value, resolved.value)
    return _moved(record, target, now)


# ── Derived flags ───────────────────────────────────────────────────


def age(record: Record, now: datetime | None = None) -> timedelta:
    return localize(now) - record.created_at


def urgency(record: Record, now: datetime | None = None, config: EngineConfig = DEFAULT_CONFIG) -> Urgency:
    """Only unanswered inquiries age into ``high`` and ``urgent``."""
    if record.status is not InquiryStatus.NEW:
        return Urgency.NORMAL
    hours = age(record, now).total_seconds() / 3600
    if hours > config.urgent_after_hours:
        return Urgency.URGENT
    if hours > config.high_after_hours:
        return Urgency.HIGH
    return Urgency.NORMAL
