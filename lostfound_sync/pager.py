from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable

from .errors import NetworkError, SyncError, ValidationError
from .feeds import FeedSpec
from .page_schema import PageSnapshot, parse_page
from .record_store import MergeMode, RecordStore
from .remote import RemoteCollection
from .run_log import ScreenLog
from .views import ViewCriteria


class PagerState(str, Enum):
    IDLE = "idle"
    LOADING_FIRST = "loading_first"
    READY = "ready"
    LOADING_MORE = "loading_more"
    EXHAUSTED = "exhausted"
    ERROR = "error"


class LoadResult(str, Enum):
    LOADED = "loaded"
    COALESCED = "coalesced"
    ALREADY_LOADING = "already_loading"
    NO_MORE_DATA = "no_more_data"
    NOT_READY = "not_ready"
    FAILED = "failed"
    DISCARDED = "discarded"


class Pager:
    """
    Drives sequential page requests for one (screen, filter-context) pair.

    At most one fetch is outstanding. Every fetch carries the generation it was
    issued under; a result whose generation is no longer current (the pager was
    closed, or a load_first for another context superseded it) is dropped
    instead of merged.

    timeout_seconds bounds the whole fetch_page call. Remotes that retry
    internally need a budget covering every attempt (see fetch_budget_seconds).
    """

    def __init__(
        self,
        remote: RemoteCollection,
        spec: FeedSpec,
        store: RecordStore,
        *,
        page_size: int,
        timeout_seconds: float | None = None,
        logger: ScreenLog | None = None,
        on_first_page: Callable[[], None] | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")

        self._remote = remote
        self._spec = spec
        self._store = store
        self._page_size = int(page_size)
        self._timeout = timeout_seconds
        self._log = logger
        self._on_first_page = on_first_page

        self._state = PagerState.IDLE
        self._criteria = spec.default_criteria()
        self._page = 0
        self._has_more = False
        self._first_loaded = False
        self._error: SyncError | None = None

        self._generation = 0
        self._closed = False
        self._inflight: asyncio.Task[LoadResult] | None = None
        self._inflight_first = False
        self._inflight_criteria: ViewCriteria | None = None

    @property
    def state(self) -> PagerState:
        return self._state

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def criteria(self) -> ViewCriteria:
        return self._criteria

    @property
    def page(self) -> int:
        """Last page merged in the current context (0 before the first success)."""
        return self._page

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def timeout_seconds(self) -> float | None:
        return self._timeout

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def error(self) -> SyncError | None:
        return self._error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def close(self) -> None:
        """Stop owning the store; late results are discarded."""
        self._closed = True
        self._generation += 1

    async def load_first(self, criteria: ViewCriteria | None = None) -> LoadResult:
        if self._closed:
            return LoadResult.DISCARDED

        crit = criteria or self._criteria

        running = self._inflight
        if running is not None and not running.done():
            same = self._inflight_criteria is not None and self._inflight_criteria.same_server_context(crit)
            if self._inflight_first and same:
                self._criteria = crit
                await running
                return LoadResult.COALESCED

        self._generation += 1
        self._criteria = crit
        self._page = 0
        self._first_loaded = False
        self._has_more = False
        self._state = PagerState.LOADING_FIRST
        return await self._start(page=1, mode=MergeMode.REPLACE_FIRST_PAGE, first=True)

    async def load_more(self) -> LoadResult:
        if self._closed:
            return LoadResult.DISCARDED
        if self.is_loading:
            return LoadResult.ALREADY_LOADING
        if self._state == PagerState.EXHAUSTED:
            return LoadResult.NO_MORE_DATA
        if self._state != PagerState.READY:
            return LoadResult.NOT_READY
        if not self._has_more:
            return LoadResult.NO_MORE_DATA

        self._state = PagerState.LOADING_MORE
        return await self._start(page=self._page + 1, mode=MergeMode.APPEND, first=False)

    async def retry(self) -> LoadResult:
        if self._closed:
            return LoadResult.DISCARDED
        if self.is_loading:
            return LoadResult.ALREADY_LOADING
        if self._state != PagerState.ERROR:
            return LoadResult.NOT_READY

        if not self._first_loaded:
            return await self.load_first(self._criteria)

        self._state = PagerState.LOADING_MORE
        return await self._start(page=self._page + 1, mode=MergeMode.APPEND, first=False)

    async def _start(self, *, page: int, mode: MergeMode, first: bool) -> LoadResult:
        task = asyncio.ensure_future(
            self._load_page(page=page, mode=mode, generation=self._generation, criteria=self._criteria)
        )
        self._inflight = task
        self._inflight_first = first
        self._inflight_criteria = self._criteria
        try:
            return await task
        finally:
            if self._inflight is task:
                self._inflight = None

    async def _load_page(
        self,
        *,
        page: int,
        mode: MergeMode,
        generation: int,
        criteria: ViewCriteria,
    ) -> LoadResult:
        params = self._spec.request_params(page=page, page_size=self._page_size, criteria=criteria)

        try:
            raw = await asyncio.wait_for(
                self._remote.fetch_page(self._spec.resource_path, params, method=self._spec.method),
                timeout=self._timeout,
            )
            snapshot = parse_page(raw, self._spec.kind, requested_page=page)
        except asyncio.TimeoutError:
            err: SyncError = NetworkError(
                f"Fetching {self._spec.resource_path} page {page} timed out after {self._timeout}s"
            )
            return self._fail(err, page=page, generation=generation)
        except SyncError as e:
            return self._fail(e, page=page, generation=generation)
        except Exception as e:
            err = SyncError(f"Unexpected error while fetching {self._spec.resource_path}: {e}")
            err.__cause__ = e
            return self._fail(err, page=page, generation=generation)

        if self._is_stale(generation):
            self._info("page_discarded", page=page, items=len(snapshot.items))
            return LoadResult.DISCARDED

        self._store.merge_page(snapshot, mode)
        self._page = page
        self._first_loaded = True
        self._error = None

        if mode == MergeMode.REPLACE_FIRST_PAGE and self._on_first_page is not None:
            self._on_first_page()

        self._has_more = self._compute_has_more(snapshot)
        self._state = PagerState.READY if self._has_more else PagerState.EXHAUSTED

        self._info(
            "page_loaded",
            page=page,
            mode=mode.value,
            items=len(snapshot.items),
            total=self._store.total_count,
            store_size=len(self._store),
            has_more=self._has_more,
        )
        return LoadResult.LOADED

    def _compute_has_more(self, snapshot: PageSnapshot) -> bool:
        received = len(snapshot.items)
        total = self._store.total_count

        if total is None:
            return received >= self._page_size

        has_more = self._store.fetched_count < total
        # The server's count may lag its data; a short page ends the list.
        if has_more and received < self._page_size:
            return False
        return has_more

    def _fail(self, err: SyncError, *, page: int, generation: int) -> LoadResult:
        if self._is_stale(generation):
            self._info("page_discarded", page=page, error=str(err))
            return LoadResult.DISCARDED

        self._error = err
        self._state = PagerState.ERROR

        if self._log is not None:
            event = "page_invalid" if isinstance(err, ValidationError) else "page_failed"
            self._log.warning(
                event,
                page=page,
                resource=self._spec.resource_path,
                error_type=type(err).__name__,
                error=str(err),
            )
        return LoadResult.FAILED

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _info(self, event: str, **data: object) -> None:
        if self._log is not None:
            self._log.info(event, resource=self._spec.resource_path, **data)
