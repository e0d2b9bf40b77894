from __future__ import annotations

import logging
from typing import Any

import httpx

from lifecycle.data_models import EntityType, Role, UserContext
from marketplace.client import MarketplaceClient
from marketplace.logging_config import configure_logging
from marketplace.poller import build_refresh_scheduler
from marketplace.settings import MarketplaceSettings
from marketplace.storage import Favorites, KeyValueStore, RedisStore, ScopedStore
from marketplace.workspace import Workspace

logger = logging.getLogger(__name__)

ROLE_COLLECTIONS: dict[Role, tuple[EntityType, ...]] = {
    Role.BUYER: (EntityType.INQUIRY, EntityType.REQUEST),
    Role.DEALER: (EntityType.INQUIRY, EntityType.REQUEST, EntityType.LISTING),
}


class MarketplaceSession:
    """Wires settings, transport, storage and one workspace per collection."""

    def __init__(
        self,
        user: UserContext,
        settings: MarketplaceSettings | None = None,
        *,
        store: KeyValueStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user = user
        self.settings = settings or MarketplaceSettings()
        configure_logging(level=self.settings.log_level, fmt=self.settings.log_format)

        self._owns_store = store is None
        self.store: Any = store or RedisStore(self.settings.redis_url, namespace=self.settings.storage_namespace)
        self.user_store = ScopedStore(self.store, user)
        self.favorites = Favorites(self.user_store)
        self.client = MarketplaceClient(
            self.settings.api_base_url,
            user,
            token=self.settings.api_token,
            timeout=self.settings.api_timeout_seconds,
            transport=transport,
        )
        config = self.settings.engine_config()
        self.workspaces: dict[EntityType, Workspace] = {
            et: Workspace(
                self.client, et, user,
                config=config,
                bulk_concurrency=self.settings.bulk_concurrency,
            )
            for et in ROLE_COLLECTIONS[user.role]
        }
        self.scheduler = build_refresh_scheduler(
            self.workspaces.values(), self.settings.refresh_interval_seconds,
        )

    def workspace(self, entity_type: EntityType) -> Workspace:
        return self.workspaces[entity_type]

    async def start(self, *, poll: bool = True) -> None:
        if self._owns_store:
            await self.store.connect()
        for ws in self.workspaces.values():
            await ws.refresh()
        if poll:
            self.scheduler.start()
        logger.info("Session started for %s %s", self.user.role.value, self.user.id)

    async def close(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.client.close()
        if self._owns_store:
            await self.store.close()
