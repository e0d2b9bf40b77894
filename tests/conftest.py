from datetime import datetime, timedelta, timezone

from lifecycle.data_models import EntityType, Record, coerce_status
from lifecycle.errors import NotFoundError, TransportError

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def make_record(
    record_id: int,
    status: str = "new",
    *,
    entity_type: EntityType = EntityType.INQUIRY,
    hours_ago: float = 1.0,
    owner: int = 100,
    counterpart: int | None = 200,
    **attributes,
) -> Record:
    return Record(
        id=record_id,
        entity_type=entity_type,
        status=coerce_status(entity_type, status),
        created_at=NOW - timedelta(hours=hours_ago),
        owner_ref=owner,
        counterpart_ref=counterpart,
        attributes=attributes,
    )


class FakeGateway:
    def __init__(self, records=None):
        self.records = list(records or [])
        self.calls = []
        self.fail_ids = set()
        self.missing_ids = set()
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_collection(self, entity_type, owner_ref, spec=None):
        self.calls.append(("fetch", entity_type, owner_ref))
        return list(self.records)

    async def _enter(self, record_id):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if record_id in self.fail_ids:
                raise TransportError("boom", status_code=500, code="SERVER_ERROR")
            if record_id in self.missing_ids:
                raise NotFoundError(record_id)
        finally:
            self.in_flight -= 1

    async def persist_transition(self, entity_type, record_id, target):
        self.calls.append(("persist", record_id, target.value))
        await self._enter(record_id)
        return None

    async def delete(self, entity_type, record_id):
        self.calls.append(("delete", record_id))
        await self._enter(record_id)
