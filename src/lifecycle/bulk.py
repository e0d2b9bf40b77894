from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Literal, Mapping

from lifecycle.data_models import Record
from lifecycle.errors import MarketplaceError, NotFoundError, PartialBatchFailure
from lifecycle.transitions import transition

logger = logging.getLogger(__name__)

PersistFn = Callable[[Record, Enum], Awaitable["Record | None"]]
DeleteFn = Callable[[Record], Awaitable[None]]


@dataclass(frozen=True)
class BulkAction:
    kind: Literal["transition", "delete"]
    target: str | None = None

    @classmethod
    def to(cls, target: Any) -> BulkAction:
        return cls(kind="transition", target=target.value if isinstance(target, Enum) else str(target))

    @classmethod
    def delete(cls) -> BulkAction:
        return cls(kind="delete")

    @classmethod
    def parse(cls, value: str) -> BulkAction:
        """Accept ``"delete"`` or ``"transition-to-<status>"``."""
        if value == "delete":
            return cls.delete()
        prefix = "transition-to-"
        if value.startswith(prefix) and len(value) > len(prefix):
            return cls.to(value[len(prefix):])
        raise ValueError(f"unknown bulk action: {value!r}")


@dataclass(frozen=True)
class ItemResult:
    id: int
    ok: bool
    reason: str = ""
    record: Record | None = None
    error: MarketplaceError | None = None


@dataclass(frozen=True)
class BulkOutcome:
    action: BulkAction
    results: tuple[ItemResult, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def updated(self) -> dict[int, Record]:
        if self.action.kind != "transition":
            return {}
        return {r.id: r.record for r in self.results if r.ok and r.record is not None}

    @property
    def deleted(self) -> list[int]:
        if self.action.kind != "delete":
            return []
        return [r.id for r in self.results if r.ok]

    @property
    def partial_failure(self) -> PartialBatchFailure | None:
        if not self.failed:
            return None
        return PartialBatchFailure(
            self.succeeded,
            self.failed,
            {r.id: r.reason for r in self.results if not r.ok},
        )

    def raise_for_failures(self) -> None:
        failure = self.partial_failure
        if failure is not None:
            raise failure


async def _apply_one(
    record_id: int,
    action: BulkAction,
    index: Mapping[int, Record],
    persist: PersistFn,
    remove: DeleteFn,
    now: datetime | None,
) -> ItemResult:
    try:
        record = index.get(record_id)
        if record is None:
            raise NotFoundError(record_id)
        if action.kind == "delete":
            await remove(record)
            return ItemResult(id=record_id, ok=True, record=record)
        moved = transition(record, action.target, now)
        if moved is record:
            return ItemResult(id=record_id, ok=True, record=record)
        confirmed = await persist(record, moved.status)
        return ItemResult(id=record_id, ok=True, record=confirmed or moved)
    except MarketplaceError as exc:
        logger.warning(
            "Bulk %s failed for %s: %s", action.kind, record_id, exc,
            extra={"record_id": record_id, "action": action.kind},
        )
        return ItemResult(id=record_id, ok=False, reason=str(exc), error=exc)


async def run_bulk(
    selected_ids: Iterable[int],
    action: BulkAction,
    records: Mapping[int, Record] | Iterable[Record],
    persist: PersistFn,
    remove: DeleteFn,
    *,
    concurrency: int = 1,
    now: datetime | None = None,
) -> BulkOutcome:
    """Apply ``action`` to every selected record, one result per ID.

    Transitions are validated before ``persist`` is awaited. A failing item
    never undoes items already applied. With ``concurrency`` above 1 the
    calls run under a semaphore; results keep the input order either way.
    """
    index = records if isinstance(records, Mapping) else {r.id: r for r in records}
    ids = list(dict.fromkeys(selected_ids))

    if concurrency <= 1:
        results = [await _apply_one(i, action, index, persist, remove, now) for i in ids]
    else:
        gate = asyncio.Semaphore(concurrency)

        async def guarded(record_id: int) -> ItemResult:
            async with gate:
                return await _apply_one(record_id, action, index, persist, remove, now)

        results = list(await asyncio.gather(*(guarded(i) for i in ids)))

    outcome = BulkOutcome(action=action, results=tuple(results))
    logger.info(
        "Bulk %s%s: %d succeeded, %d failed",
        action.kind,
        f" -> {action.target}" if action.target else "",
        outcome.succeeded,
        outcome.failed,
    )
    return outcome
