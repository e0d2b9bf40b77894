from __future__ import annotations

import logging
from typing import Iterable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from lifecycle.errors import MarketplaceError
from marketplace.workspace import Workspace

logger = logging.getLogger(__name__)


async def poll_once(workspace: Workspace) -> bool:
    """Refresh one workspace; a failed refresh keeps the previous snapshot."""
    try:
        await workspace.refresh()
    except MarketplaceError as exc:
        logger.warning("Refresh of %s failed: %s", workspace.entity_type.value, exc)
        return False
    return True


def build_refresh_scheduler(workspaces: Iterable[Workspace], interval_seconds: int) -> AsyncIOScheduler:
    if interval_seconds <= 0:
        raise ValueError("Refresh interval must be positive")
    scheduler = AsyncIOScheduler()
    for workspace in workspaces:
        scheduler.add_job(
            poll_once,
            trigger=IntervalTrigger(seconds=interval_seconds),
            args=[workspace],
            id=f"refresh_{workspace.entity_type.value}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    return scheduler
