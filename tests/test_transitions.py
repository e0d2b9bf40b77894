from datetime import timedelta

import pytest

from lifecycle.config import EngineConfig
from lifecycle.data_models import (
    STATUS_DOMAINS,
    EntityType,
    InquiryStatus,
    ListingStatus,
    RequestStatus,
)
from lifecycle.errors import InvalidTransitionError
from lifecycle.transitions import (
    Action,
    Urgency,
    age,
    allowed_actions,
    allowed_targets,
    apply_action,
    can_transition,
    legal_pairs,
    transition,
    urgency,
)

from conftest import NOW, make_record

LEGAL = {
    EntityType.INQUIRY: {
        (InquiryStatus.NEW, InquiryStatus.RESPONDED),
        (InquiryStatus.NEW, InquiryStatus.CLOSED),
        (InquiryStatus.RESPONDED, InquiryStatus.CLOSED),
    },
    EntityType.REQUEST: {
        (RequestStatus.ACTIVE, RequestStatus.CLOSED),
        (RequestStatus.CLOSED, RequestStatus.ACTIVE),
    },
    EntityType.LISTING: {
        (ListingStatus.ACTIVE, ListingStatus.SOLD),
        (ListingStatus.HIDDEN, ListingStatus.SOLD),
        (ListingStatus.ACTIVE, ListingStatus.HIDDEN),
        (ListingStatus.HIDDEN, ListingStatus.ACTIVE),
    },
}


def _all_pairs():
    for et, domain in STATUS_DOMAINS.items():
        for current in domain:
            for target in domain:
                if current is not target:
                    yield et, current, target


# ── Legality ────────────────────────────────────────────────────────


def test_legal_pairs_table():
    for et, expected in LEGAL.items():
        assert legal_pairs(et) == expected


@pytest.mark.parametrize("entity_type,current,target", list(_all_pairs()))
def test_transition_matrix(entity_type, current, target):
    rec = make_record(1, current.value, entity_type=entity_type)
    if (current, target) in LEGAL[entity_type]:
        moved = transition(rec, target, NOW)
        assert moved.status is target
        assert moved.updated_at == NOW
        assert can_transition(rec, target)
    else:
        with pytest.raises(InvalidTransitionError):
            transition(rec, target, NOW)
        assert not can_transition(rec, target)


def test_same_status_is_noop():
    rec = make_record(1, "responded")
    assert transition(rec, "responded") is rec
    assert transition(rec, InquiryStatus.RESPONDED) is rec


def test_transition_never_mutates_input():
    rec = make_record(1, "new")
    moved = transition(rec, "responded", NOW)
    assert rec.status is InquiryStatus.NEW
    assert rec.responded_at is None
    assert moved.responded_at == NOW
    assert moved.attributes == rec.attributes


def test_out_of_domain_target_raises():
    rec = make_record(1, "active", entity_type=EntityType.LISTING)
    with pytest.raises(InvalidTransitionError) as exc_info:
        transition(rec, "responded")
    assert exc_info.value.current == "active"
    assert exc_info.value.user_message == "Cannot perform this action"


def test_apply_action():
    rec = make_record(1, "hidden", entity_type=EntityType.LISTING)
    assert apply_action(rec, "show", NOW).status is ListingStatus.ACTIVE
    assert apply_action(rec, Action.MARK_SOLD, NOW).status is ListingStatus.SOLD
    with pytest.raises(InvalidTransitionError):
        apply_action(rec, "hide")
    with pytest.raises(InvalidTransitionError):
        apply_action(rec, "teleport")


def test_allowed_actions_and_targets():
    closed_request = make_record(1, "closed", entity_type=EntityType.REQUEST)
    assert allowed_actions(closed_request) == [Action.REOPEN]
    assert allowed_targets(closed_request) == [RequestStatus.ACTIVE]
    assert allowed_actions(make_record(2, "closed")) == []


# ── Urgency ─────────────────────────────────────────────────────────


def test_new_inquiry_after_25h_is_urgent():
    rec = make_record(1, "new", hours_ago=25)
    assert age(rec, NOW) == timedelta(hours=25)
    assert urgency(rec, NOW) is Urgency.URGENT


@pytest.mark.parametrize("hours,expected", [
    (1, Urgency.NORMAL),
    (12, Urgency.NORMAL),
    (13, Urgency.HIGH),
    (24, Urgency.HIGH),
    (24.01, Urgency.URGENT),
])
def test_urgency_boundaries(hours, expected):
    assert urgency(make_record(1, "new", hours_ago=hours), NOW) is expected


def test_urgency_only_while_open():
    assert urgency(make_record(1, "responded", hours_ago=100), NOW) is Urgency.NORMAL
    assert urgency(make_record(2, "closed", entity_type=EntityType.REQUEST, hours_ago=100), NOW) is Urgency.NORMAL
    assert urgency(make_record(3, "active", entity_type=EntityType.REQUEST, hours_ago=100), NOW) is Urgency.NORMAL
    assert urgency(make_record(4, "active", entity_type=EntityType.LISTING, hours_ago=100), NOW) is Urgency.NORMAL


def test_urgency_thresholds_from_config():
    cfg = EngineConfig(urgent_after_hours=4.0, high_after_hours=2.0)
    assert urgency(make_record(1, "new", hours_ago=3), NOW, cfg) is Urgency.HIGH
    assert urgency(make_record(1, "new", hours_ago=5), NOW, cfg) is Urgency.URGENT


def test_naive_now_is_read_as_local_time():
    rec = make_record(1, "new", hours_ago=25)
    local_wall_clock = NOW.astimezone().replace(tzinfo=None)
    assert age(rec, local_wall_clock) == timedelta(hours=25)
    assert urgency(rec, local_wall_clock) is Urgency.URGENT
