from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Coroutine, Hashable, TypeVar

from .config_schema import AppConfig, EndpointsConfig
from .errors import SyncError
from .feeds import FeedSpec, build_feed_specs
from .pager import LoadResult, Pager, PagerState
from .reconciler import MutationReconciler, MutationResult
from .record_store import RecordStore
from .remote import RemoteCollection
from .retry import RetryConfig, worst_case_seconds
from .run_log import RunLogger
from .views import ViewCriteria, requires_refetch

T = TypeVar("T")


@dataclass(frozen=True)
class ListState:
    items: tuple[Any, ...]
    is_loading_first: bool
    is_loading_more: bool
    has_more: bool
    error: SyncError | None


def _covers(fetched: ViewCriteria, wanted: ViewCriteria) -> bool:
    # The store was fetched under filters that are a subset of the wanted ones,
    # so the wanted view can be derived locally.
    have = fetched.server_params()
    want = wanted.server_params()
    return all(want.get(k) == v for k, v in have.items())


class ListController:
    """
    What a list screen talks to.

    Every command schedules its work on the running event loop and returns the
    task immediately; `state()` reflects progress as the work completes.
    """

    def __init__(
        self,
        remote: RemoteCollection,
        spec: FeedSpec,
        *,
        endpoints: EndpointsConfig,
        page_size: int,
        timeout_seconds: float | None = None,
        logger: RunLogger | None = None,
        store: RecordStore | None = None,
    ) -> None:
        self._spec = spec
        self._store = store if store is not None else RecordStore()
        self._log = logger.for_screen(spec.name) if logger is not None else None
        self._criteria = spec.default_criteria()
        self._tasks: set[asyncio.Task[Any]] = set()

        self.reconciler = MutationReconciler(
            self._store,
            remote,
            endpoints=endpoints,
            logger=self._log,
        )
        self.pager = Pager(
            remote,
            spec,
            self._store,
            page_size=page_size,
            timeout_seconds=timeout_seconds,
            logger=self._log,
            on_first_page=self.reconciler.on_full_refresh,
        )

    @property
    def spec(self) -> FeedSpec:
        return self._spec

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def criteria(self) -> ViewCriteria:
        return self._criteria

    def state(self) -> ListState:
        return ListState(
            items=self._store.items,
            is_loading_first=self.pager.state == PagerState.LOADING_FIRST,
            is_loading_more=self.pager.state == PagerState.LOADING_MORE,
            has_more=self.pager.has_more,
            error=self.pager.error,
        )

    def view(self, *, now: datetime | None = None) -> list[Any]:
        return self._criteria.apply(self._store.items, now=now)

    def load_first(self, criteria: ViewCriteria | None = None) -> asyncio.Task[LoadResult]:
        if criteria is not None:
            self._criteria = criteria
        return self._spawn(self.pager.load_first(self._criteria))

    def load_more(self) -> asyncio.Task[LoadResult]:
        return self._spawn(self.pager.load_more())

    def retry(self) -> asyncio.Task[LoadResult]:
        return self._spawn(self.pager.retry())

    def set_filter(self, criteria: ViewCriteria) -> asyncio.Task[LoadResult | None]:
        """
        Switch the active filters.

        The view is refined locally when the fetched store covers the new filters
        and can fill a page; otherwise the first page is fetched again with the
        new filters sent server-side.
        """
        self._criteria = criteria
        fetched = self.pager.criteria

        refetch = False
        if self.pager.state == PagerState.IDLE:
            refetch = True
        elif not _covers(fetched, criteria):
            refetch = True
        elif not criteria.same_server_context(fetched):
            refetch = requires_refetch(
                criteria,
                self._store.items,
                page_size=self.pager.page_size,
                has_more=self.pager.has_more,
            )

        if self._log is not None:
            self._log.info("filter_changed", refetch=refetch, params=criteria.server_params())

        if refetch:
            return self._spawn(self.pager.load_first(criteria))
        return self._spawn(_noop())

    def mark_read(self, record_id: Hashable) -> asyncio.Task[MutationResult]:
        return self._spawn(self.reconciler.mark_read(record_id))

    def toggle_follow(self, thread_id: Hashable) -> asyncio.Task[MutationResult]:
        return self._spawn(self.reconciler.toggle_follow(thread_id))

    def soft_delete(self, record_id: Hashable) -> asyncio.Task[MutationResult]:
        return self._spawn(self.reconciler.soft_delete(record_id))

    def close(self) -> None:
        """The screen lost focus for good: late page results are discarded."""
        self.pager.close()
        if self._log is not None:
            self._log.info("screen_closed", store_size=len(self._store))

    async def settle(self) -> None:
        """Wait for every command scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _spawn(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


async def _noop() -> None:
    return None


def fetch_budget_seconds(config: AppConfig) -> float:
    """
    How long a pager waits for one page.

    The remote retries internally, so the wait covers every attempt and backoff
    rather than a single request timeout.
    """
    return worst_case_seconds(
        RetryConfig(max_attempts=config.api.max_attempts),
        attempt_timeout=config.api.timeout_seconds,
    )


def open_feed(
    config: AppConfig,
    remote: RemoteCollection,
    feed: str,
    *,
    logger: RunLogger | None = None,
) -> ListController:
    specs = build_feed_specs(config)
    spec = specs.get(feed)
    if spec is None:
        raise KeyError(f"unknown feed: {feed} (known: {', '.join(sorted(specs))})")

    return ListController(
        remote,
        spec,
        endpoints=config.endpoints,
        page_size=config.paging.page_size,
        timeout_seconds=fetch_budget_seconds(config),
        logger=logger,
    )
