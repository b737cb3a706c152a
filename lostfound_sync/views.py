from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence

from .config_schema import ALL_TAB
from .records import record_timestamp


def _norm(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s if s else None


def by_category(records: Iterable[Any], tab: str | None) -> list[Any]:
    """Records of one building tab, or every record for "All"."""
    t = _norm(tab)
    if t is None or t == ALL_TAB:
        return list(records)
    return [r for r in records if getattr(r, "building", None) == t]


def by_time_window(
    records: Iterable[Any],
    days: int,
    *,
    now: datetime | None = None,
) -> list[Any]:
    """Records whose found_at/created_at falls within [now - days, now]."""
    if days < 0:
        raise ValueError("days must be >= 0")

    end = now or datetime.now(timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    start = end - timedelta(days=days)

    out: list[Any] = []
    for r in records:
        ts = record_timestamp(r)
        if ts is None:
            continue
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        if start <= ts <= end:
            out.append(r)
    return out


def by_floor(records: Iterable[Any], floor: str | int) -> list[Any]:
    f = _norm(floor)
    return [r for r in records if _norm(getattr(r, "floor", None)) == f]


def by_status(records: Iterable[Any], statuses: Iterable[Any]) -> list[Any]:
    wanted = {getattr(s, "value", s) for s in statuses}
    return [r for r in records if getattr(getattr(r, "status", None), "value", None) in wanted]


def search(records: Iterable[Any], text: str) -> list[Any]:
    needle = (text or "").strip().casefold()
    if not needle:
        return list(records)

    out: list[Any] = []
    for r in records:
        for attr in ("title", "description", "message"):
            value = getattr(r, attr, None)
            if isinstance(value, str) and needle in value.casefold():
                out.append(r)
                break
    return out


@dataclass(frozen=True)
class ViewCriteria:
    """
    Active filters of one list screen. Filters combine with AND.

    tab/days/floor are also sent server-side when a refetch is needed; status and
    text refine the already fetched store only.
    """

    tab: str = ALL_TAB
    days: int | None = None
    floor: str | None = None
    statuses: frozenset[str] | None = None
    text: str | None = None

    def __post_init__(self) -> None:
        if self.days is not None and self.days < 0:
            raise ValueError("days must be >= 0")

    def apply(self, records: Sequence[Any], *, now: datetime | None = None) -> list[Any]:
        out = by_category(records, self.tab)
        if self.days is not None:
            out = by_time_window(out, self.days, now=now)
        if self.floor is not None:
            out = by_floor(out, self.floor)
        if self.statuses:
            out = by_status(out, self.statuses)
        if self.text:
            out = search(out, self.text)
        return out

    def server_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        tab = _norm(self.tab)
        if tab is not None and tab != ALL_TAB:
            params["building"] = tab
        if self.days is not None:
            params["days"] = int(self.days)
        if self.floor is not None:
            params["floor"] = _norm(self.floor)
        return params

    def same_server_context(self, other: "ViewCriteria") -> bool:
        return self.server_params() == other.server_params()


def requires_refetch(
    criteria: ViewCriteria,
    records: Sequence[Any],
    *,
    page_size: int,
    has_more: bool,
    now: datetime | None = None,
) -> bool:
    """
    True when the filtered view cannot fill a page from what is already fetched
    and the server may still hold matching records.
    """
    if not has_more:
        return False
    return len(criteria.apply(records, now=now)) < int(page_size)
