from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Hashable, Iterable, Iterator, Sequence, TypeVar

from .page_schema import PageSnapshot

R = TypeVar("R")


class MergeMode(str, Enum):
    REPLACE_FIRST_PAGE = "replace_first_page"
    APPEND = "append"


class StoreSignal(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"


def record_key(record: Any) -> Hashable:
    return getattr(record, "id")


def _dedupe_into(out: list[Any], index: dict[Hashable, int], records: Iterable[Any]) -> None:
    # First occurrence fixes the slot; later occurrences overwrite the value.
    for record in records:
        key = record_key(record)
        pos = index.get(key)
        if pos is None:
            index[key] = len(out)
            out.append(record)
        else:
            out[pos] = record


def merge(existing: Sequence[R], incoming: Sequence[R], mode: MergeMode) -> list[R]:
    """
    Merge an incoming page into an ordered collection keyed by record id.

    REPLACE_FIRST_PAGE drops `existing` and dedupes `incoming` against itself.
    APPEND keeps `existing` first; incoming duplicates update values in place.
    """
    out: list[R] = []
    index: dict[Hashable, int] = {}

    if mode == MergeMode.REPLACE_FIRST_PAGE:
        _dedupe_into(out, index, incoming)
    elif mode == MergeMode.APPEND:
        _dedupe_into(out, index, existing)
        _dedupe_into(out, index, incoming)
    else:
        raise ValueError(f"unknown merge mode: {mode!r}")

    return out


ChangeListener = Callable[["RecordStore"], None]


class RecordStore:
    """
    Ordered, deduplicated collection of records for one list context.

    The store is the only holder of list contents; views read `items` and the
    reconciler is the only writer besides page merges.
    """

    def __init__(self, records: Iterable[Any] | None = None) -> None:
        self._items: list[Any] = merge([], list(records or []), MergeMode.REPLACE_FIRST_PAGE)
        self._total_count: int | None = None
        self._fetched_count = 0
        self._listeners: list[ChangeListener] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(tuple(self._items))

    def __contains__(self, record_id: object) -> bool:
        return self.index_of(record_id) is not None  # type: ignore[arg-type]

    @property
    def items(self) -> tuple[Any, ...]:
        return tuple(self._items)

    @property
    def total_count(self) -> int | None:
        return self._total_count

    @property
    def fetched_count(self) -> int:
        """Number of items received from the server since the last first-page merge."""
        return self._fetched_count

    def ids(self) -> list[Hashable]:
        return [record_key(r) for r in self._items]

    def index_of(self, record_id: Hashable) -> int | None:
        for i, record in enumerate(self._items):
            if record_key(record) == record_id:
                return i
        return None

    def get(self, record_id: Hashable) -> Any | None:
        pos = self.index_of(record_id)
        return self._items[pos] if pos is not None else None

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def merge_page(self, snapshot: PageSnapshot, mode: MergeMode) -> None:
        self._items = merge(self._items, snapshot.items, mode)

        if mode == MergeMode.REPLACE_FIRST_PAGE:
            self._fetched_count = len(snapshot.items)
            self._total_count = snapshot.total_count
        else:
            self._fetched_count += len(snapshot.items)
            # A later page never extends the count learned from the first page.
            if self._total_count is None:
                self._total_count = snapshot.total_count

        self._notify()

    def seed(self, records: Sequence[Any]) -> None:
        """Install restored records as a page-0 seed; the first real fetch replaces them."""
        self._items = merge([], records, MergeMode.REPLACE_FIRST_PAGE)
        self._fetched_count = 0
        self._total_count = None
        self._notify()

    def apply_mutation(self, record_id: Hashable, fn: Callable[[Any], Any]) -> StoreSignal:
        pos = self.index_of(record_id)
        if pos is None:
            return StoreSignal.NOT_FOUND

        updated = fn(self._items[pos])
        if record_key(updated) != record_id:
            raise ValueError("mutation must not change the record id")
        self._items[pos] = updated
        self._notify()
        return StoreSignal.OK

    def evict(self, record_id: Hashable) -> StoreSignal:
        pos = self.index_of(record_id)
        if pos is None:
            return StoreSignal.NOT_FOUND
        del self._items[pos]
        self._notify()
        return StoreSignal.OK

    def insert_at(self, index: int, record: Any) -> StoreSignal:
        """
        Put a record back at `index` (clamped to the current length).

        If the id is already present (e.g. a refresh brought it back) the value is
        replaced in place and no second slot is created.
        """
        key = record_key(record)
        pos = self.index_of(key)
        if pos is not None:
            self._items[pos] = record
        else:
            at = min(max(0, int(index)), len(self._items))
            self._items.insert(at, record)
        self._notify()
        return StoreSignal.OK

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
