import pytest

from lifecycle.bulk import BulkAction
from lifecycle.data_models import EntityType, InquiryStatus, Role, UserContext
from lifecycle.errors import InvalidTransitionError, NotFoundError, TransportError
from marketplace.workspace import Workspace

from conftest import NOW, FakeGateway, make_record

DEALER = UserContext(id=200, role=Role.DEALER)


async def _workspace(records, **kwargs):
    gateway = FakeGateway(records)
    ws = Workspace(gateway, "inquiry", DEALER, **kwargs)
    await ws.refresh()
    return ws, gateway


# ── Snapshot ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_refresh_replaces_snapshot_and_prunes_selection():
    ws, gateway = await _workspace([make_record(1), make_record(2)])
    assert len(ws) == 2
    assert gateway.calls[0] == ("fetch", EntityType.INQUIRY, 200)
    ws.select(1)
    ws.select(2)
    gateway.records = [make_record(2, "responded")]
    await ws.refresh()
    assert ws.selection == {2}
    assert ws.get(2).status is InquiryStatus.RESPONDED
    assert ws.last_refreshed is not None
    with pytest.raises(NotFoundError):
        ws.get(1)


@pytest.mark.asyncio
async def test_summary_uses_full_snapshot_not_view():
    ws, _ = await _workspace([make_record(1, "new"), make_record(2, "responded"), make_record(3, "closed")])
    view = ws.view({"status": "new"}, NOW)
    summary = ws.summary(NOW)
    assert [r.id for r in view] == [1]
    assert summary.total == 3
    assert summary.response_rate == 33


# ── Single actions ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_illegal_transition_never_reaches_gateway():
    ws, gateway = await _workspace([make_record(1, "closed")])
    with pytest.raises(InvalidTransitionError):
        await ws.transition(1, "responded")
    assert [c for c in gateway.calls if c[0] == "persist"] == []


@pytest.mark.asyncio
async def test_transition_persists_and_updates_snapshot():
    ws, gateway = await _workspace([make_record(1, "new")])
    moved = await ws.apply(1, "respond", now=NOW)
    assert moved.status is InquiryStatus.RESPONDED
    assert ws.get(1).responded_at == NOW
    assert gateway.calls[-1] == ("persist", 1, "responded")


@pytest.mark.asyncio
async def test_optimistic_update_rolls_back_on_failure():
    ws, gateway = await _workspace([make_record(1, "new")])
    gateway.fail_ids.add(1)
    with pytest.raises(TransportError):
        await ws.transition(1, "closed", optimistic=True)
    assert ws.get(1).status is InquiryStatus.NEW


@pytest.mark.asyncio
async def test_same_status_transition_makes_no_call():
    ws, gateway = await _workspace([make_record(1, "closed")])
    assert (await ws.transition(1, InquiryStatus.CLOSED)).status is InquiryStatus.CLOSED
    assert len(gateway.calls) == 1


@pytest.mark.asyncio
async def test_delete_removes_record_and_selection():
    ws, gateway = await _workspace([make_record(1), make_record(2)])
    ws.select(1)
    await ws.delete(1)
    assert len(ws) == 1
    assert ws.selection == set()
    with pytest.raises(NotFoundError):
        await ws.delete(1)


# ── Selection and bulk ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_selection_helpers():
    ws, _ = await _workspace([make_record(1, "new"), make_record(2, "closed")])
    assert ws.toggle_selection(1) is True
    assert ws.toggle_selection(1) is False
    ws.select_all(ws.view({"status": "closed"}, NOW))
    assert ws.selection == {2}
    ws.select_all()
    assert ws.selection == {1, 2}
    ws.clear_selection()
    assert ws.selection == set()
    with pytest.raises(NotFoundError):
        ws.select(42)


@pytest.mark.asyncio
async def test_bulk_over_selection_reports_partial_failure():
    ws, gateway = await _workspace([make_record(i, "closed" if i == 3 else "new") for i in range(1, 6)])
    ws.select_all()
    outcome = await ws.run_bulk("transition-to-responded")
    assert (outcome.succeeded, outcome.failed) == (4, 1)
    assert ws.selection == set()
    assert ws.get(1).status is InquiryStatus.RESPONDED
    assert ws.get(3).status is InquiryStatus.CLOSED
    assert outcome.partial_failure.summary()["failed"] == 1


@pytest.mark.asyncio
async def test_bulk_delete_updates_snapshot():
    ws, gateway = await _workspace([make_record(i) for i in (1, 2, 3)])
    gateway.missing_ids.add(2)
    outcome = await ws.run_bulk(BulkAction.delete(), ids=[1, 2])
    assert outcome.deleted == [1]
    assert sorted(r.id for r in ws.records) == [2, 3]


@pytest.mark.asyncio
async def test_selection_cleared_even_when_batch_raises():
    class Exploding(FakeGateway):
        async def persist_transition(self, entity_type, record_id, target):
            raise RuntimeError("bug")

    ws = Workspace(Exploding([make_record(1)]), EntityType.INQUIRY, DEALER)
    await ws.refresh()
    ws.select(1)
    with pytest.raises(RuntimeError):
        await ws.run_bulk(BulkAction.to("closed"))
    assert ws.selection == set()


@pytest.mark.asyncio
async def test_bulk_does_not_restore_records_dropped_by_refresh():
    class RefreshingMidBatch(FakeGateway):
        async def persist_transition(self, entity_type, record_id, target):
            await super().persist_transition(entity_type, record_id, target)
            if record_id == 2:
                ws.replace([ws.get(1)])
            return None

    ws = Workspace(RefreshingMidBatch([make_record(1), make_record(2)]), "inquiry", DEALER)
    await ws.refresh()
    outcome = await ws.run_bulk("transition-to-closed", ids=[1, 2])
    assert outcome.succeeded == 2
    assert [r.id for r in ws.records] == [1]
    assert ws.get(1).status is InquiryStatus.CLOSED
