from __future__ import annotations

import asyncio
from typing import Hashable

from .config_schema import AppConfig
from .feeds import build_feed_specs
from .list_controller import ListController, fetch_budget_seconds
from .pager import LoadResult
from .persistence import SnapshotGateway, SQLiteSnapshotStore
from .reconciler import MutationResult
from .remote import RemoteCollection
from .run_log import RunLogger
from .views import ViewCriteria


class NotificationFeed(ListController):
    """
    The notification screen: a list controller whose store survives restarts.

    The saved snapshot is restored before the first fetch and acts as a page-0
    seed; the first real page replaces it. Every later store change is written
    back under the configured key.
    """

    def __init__(
        self,
        remote: RemoteCollection,
        config: AppConfig,
        *,
        storage: SQLiteSnapshotStore | None = None,
        logger: RunLogger | None = None,
    ) -> None:
        super().__init__(
            remote,
            build_feed_specs(config)["notifications"],
            endpoints=config.endpoints,
            page_size=config.paging.page_size,
            timeout_seconds=fetch_budget_seconds(config),
            logger=logger,
        )
        self.gateway: SnapshotGateway | None = None
        if storage is not None:
            self.gateway = SnapshotGateway(
                storage,
                key=config.persistence.notification_key,
                kind="notification",
                logger=self._log,
            )
        self._hydrated = False

    def hydrate(self) -> int:
        """Restore the saved list once; returns how many records were restored."""
        if self._hydrated or self.gateway is None:
            return 0
        self._hydrated = True
        restored = self.gateway.hydrate(self.store)
        self.gateway.attach(self.store)
        return restored

    def load_first(self, criteria: ViewCriteria | None = None) -> asyncio.Task[LoadResult]:
        self.hydrate()
        return super().load_first(criteria)

    def unread_count(self) -> int:
        return sum(1 for n in self.store.items if not n.is_read)

    def mark_all_read(self) -> asyncio.Task[list[MutationResult]]:
        return self._spawn(self.reconciler.mark_all_read())

    def open_notification(self, record_id: Hashable) -> tuple[asyncio.Task[MutationResult], int | None]:
        """
        Mark a notification read and return the post it points at.

        The post id is only a lookup key; the post may no longer exist.
        """
        record = self.store.get(record_id)
        related = record.related_post_id if record is not None else None
        return self.mark_read(record_id), related

    async def flush(self) -> None:
        await self.settle()
        if self.gateway is not None:
            await self.gateway.flush()
