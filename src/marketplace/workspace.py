from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from lifecycle.bulk import BulkAction, BulkOutcome, run_bulk
from lifecycle.config import DEFAULT_CONFIG, EngineConfig
from lifecycle.data_models import Record, UserContext, coerce_entity_type
from lifecycle.errors import MarketplaceError, NotFoundError
from lifecycle.filters import FilterSpec, apply_filters
from lifecycle.stats import CollectionStats, aggregate
from lifecycle.transitions import apply_action, transition
from marketplace.client import RecordGateway
from marketplace.logging_config import new_correlation_id

logger = logging.getLogger(__name__)


class Workspace:
    """One screen's working copy of a collection.

    The workspace is the only writer of its snapshot. ``refresh`` replaces
    the snapshot wholesale; views and summaries are derived on demand, the
    summary always from the full snapshot.
    """

    def __init__(
        self,
        gateway: RecordGateway,
        entity_type: Any,
        user: UserContext,
        *,
        config: EngineConfig = DEFAULT_CONFIG,
        bulk_concurrency: int = 1,
    ) -> None:
        self.gateway = gateway
        self.entity_type = coerce_entity_type(entity_type)
        self.user = user
        self.config = config
        self.bulk_concurrency = bulk_concurrency
        self.selection: set[int] = set()
        self.last_refreshed: datetime | None = None
        self._records: dict[int, Record] = {}

    @property
    def records(self) -> list[Record]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def get(self, record_id: int) -> Record:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(record_id, self.entity_type.value)
        return record

    def replace(self, records: Iterable[Record]) -> None:
        self._records = {r.id: r for r in records}
        self.selection &= self._records.keys()

    async def refresh(self, spec: FilterSpec | Mapping[str, Any] | None = None) -> list[Record]:
        new_correlation_id()
        fetched = await self.gateway.fetch_collection(
            self.entity_type, self.user.id, FilterSpec.from_options(spec) if spec else None,
        )
        self.replace(fetched)
        self.last_refreshed = datetime.now(timezone.utc)
        return self.records

    # ── Derived views ───────────────────────────────────────────────

    def view(self, spec: FilterSpec | Mapping[str, Any] | None = None, now: datetime | None = None) -> list[Record]:
        return apply_filters(self.records, spec, self.entity_type, now, self.config)

    def summary(self, now: datetime | None = None) -> CollectionStats:
        return aggregate(self.records, self.entity_type, now or datetime.now(timezone.utc), self.config)

    # ── Single actions ──────────────────────────────────────────────

    async def _commit(self, before: Record, after: Record, optimistic: bool) -> Record:
        if after is before:
            return before
        if optimistic:
            self._records[before.id] = after
        try:
            confirmed = await self.gateway.persist_transition(self.entity_type, before.id, after.status)
        except MarketplaceError:
            if optimistic:
                self._records[before.id] = before
            logger.warning("Persisting %s %s -> %s failed", self.entity_type.value, before.id, after.status.value)
            raise
        final = confirmed or after
        self._records[before.id] = final
        logger.info(
            "%s %s: %s -> %s", self.entity_type.value, before.id, before.status.value, final.status.value,
            extra={"entity_type": self.entity_type.value, "record_id": before.id},
        )
        return final

    async def transition(
        self,
        record_id: int,
        target: Any,
        *,
        optimistic: bool = False,
        now: datetime | None = None,
    ) -> Record:
        """Validate locally, then persist. Illegal moves never reach the gateway."""
        new_correlation_id()
        record = self.get(record_id)
        return await self._commit(record, transition(record, target, now), optimistic)

    async def apply(self, record_id: int, action: Any, *, optimistic: bool = False, now: datetime | None = None) -> Record:
        new_correlation_id()
        record = self.get(record_id)
        return await self._commit(record, apply_action(record, action, now), optimistic)

    async def delete(self, record_id: int) -> None:
        new_correlation_id()
        self.get(record_id)
        await self.gateway.delete(self.entity_type, record_id)
        self._records.pop(record_id, None)
        self.selection.discard(record_id)

    # ── Selection and bulk actions ──────────────────────────────────

    def select(self, record_id: int) -> None:
        self.get(record_id)
        self.selection.add(record_id)

    def deselect(self, record_id: int) -> None:
        self.selection.discard(record_id)

    def toggle_selection(self, record_id: int) -> bool:
        if record_id in self.selection:
            self.selection.discard(record_id)
            return False
        self.select(record_id)
        return True

    def select_all(self, records: Iterable[Record] | None = None) -> None:
        """Select every record of ``records`` (typically the current view)."""
        pool = self.records if records is None else records
        self.selection.update(r.id for r in pool if r.id in self._records)

    def clear_selection(self) -> None:
        self.selection.clear()

    async def run_bulk(self, action: BulkAction | str, ids: Iterable[int] | None = None) -> BulkOutcome:
        """Apply ``action`` to the selection (or ``ids``); selection is cleared afterwards."""
        new_correlation_id()
        if isinstance(action, str):
            action = BulkAction.parse(action)
        chosen = sorted(self.selection) if ids is None else list(ids)

        async def persist(record: Record, target: Any) -> Record | None:
            return await self.gateway.persist_transition(self.entity_type, record.id, target)

        async def remove(record: Record) -> None:
            await self.gateway.delete(self.entity_type, record.id)

        try:
            outcome = await run_bulk(
                chosen,
                action,
                self._records,
                persist,
                remove,
                concurrency=self.bulk_concurrency,
            )
            # a refresh during the batch wins over results for ids it dropped
            self._records.update(
                {rid: rec for rid, rec in outcome.updated.items() if rid in self._records}
            )
            for record_id in outcome.deleted:
                self._records.pop(record_id, None)
        finally:
            self.selection.clear()

        failure = outcome.partial_failure
        if failure is not None:
            logger.warning(
                "Bulk %s partially failed: %s", action.kind, failure,
                extra={"entity_type": self.entity_type.value, "action": action.kind, "extra_data": failure.summary()},
            )
        return outcome
