from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

from .config_schema import EndpointsConfig

_BUILDINGS = ("H1", "H2", "H3", "H6")

_OFFLINE_TITLES = (
    "Black umbrella",
    "Student ID card",
    "Blue water bottle",
    "AirPods case",
    "Calculus textbook",
    "Grey hoodie",
)


def _numeric_suffix(value: str) -> int | None:
    s = (value or "").strip().rstrip("/")
    if not s:
        return None

    digits: list[str] = []
    for ch in reversed(s):
        if ch.isdigit():
            digits.append(ch)
            continue
        break

    if not digits:
        return None
    return int("".join(reversed(digits)))


def default_collections(
    endpoints: EndpointsConfig,
    *,
    now: datetime | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """
    A small deterministic data set keyed by resource path.

    Twelve posts spread over the building tabs (two pages at the default page
    size), five notifications and three reports. Timestamps are relative to
    `now` so time-window filters keep matching.
    """
    base = now or datetime.now(timezone.utc)

    posts: list[dict[str, Any]] = []
    for i in range(1, 13):
        posts.append(
            {
                "id": i,
                "title": _OFFLINE_TITLES[i % len(_OFFLINE_TITLES)],
                "building": _BUILDINGS[i % len(_BUILDINGS)],
                "post_floor": str(1 + i % 3),
                "nearest_room": f"{100 + i}",
                "found_at": (base - timedelta(days=i)).isoformat(),
                "post_description": "Left at the front desk.",
                "images": [{"url": f"https://example.com/img/{i}.jpg"}],
                "usr_id": 1 + i % 2,
                "post_status": "OPEN" if i % 4 else "WITH_SECURITY",
                "thread_id": 100 + i,
            }
        )

    archived = [
        {
            "id": 50 + i,
            "title": f"Archived item {i}",
            "building": _BUILDINGS[i % len(_BUILDINGS)],
            "post_floor": "1",
            "found_at": (base - timedelta(days=60 + i)).isoformat(),
            "usr_id": 1,
            "post_status": "ARCHIVED",
        }
        for i in range(1, 4)
    ]

    notifications = [
        {
            "id": i,
            "title": "Item claimed" if i % 2 else "Item returned",
            "noti_message": f"Update on post {i}",
            "time_created": (base - timedelta(hours=i)).isoformat(),
            "is_read": i > 3,
            "post_id": i,
        }
        for i in range(1, 6)
    ]

    reports = [
        {
            "id": i,
            "title": f"Report {i}",
            "report_message": "Post looks like spam.",
            "time_created": (base - timedelta(days=i)).isoformat(),
            "status": ("PENDING", "UNRESOLVED", "RESOLVED")[i % 3],
            "user": {"id": 10 + i, "alias": f"student{i}"},
        }
        for i in range(1, 4)
    ]

    return {
        endpoints.posts: posts + archived,
        endpoints.my_posts: [p for p in posts if p["usr_id"] == 1],
        endpoints.reports: reports,
        endpoints.notifications: notifications,
    }


@dataclass(frozen=True)
class RemoteCall:
    op: str
    method: str
    resource_path: str
    params: dict[str, Any]


@dataclass
class InMemoryRemoteCollection:
    """
    Network-free RemoteCollection for offline runs and tests.

    Serves `{page, total, items}` envelopes (or bare lists for paths in
    `bare_list_paths`), applies the building/floor/status filters the real
    dashboard applies, and records every call. Failures can be queued per
    path, and `gate` holds every response until it is set.
    """

    collections: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    bare_list_paths: Sequence[str] = ()
    page_param: str = "page"
    limit_params: Sequence[str] = ("limit", "number")
    delay_seconds: float = 0.0
    gate: asyncio.Event | None = None
    calls: list[RemoteCall] = field(default_factory=list)
    _failures: dict[str, deque[BaseException]] = field(
        init=False, repr=False, default_factory=lambda: defaultdict(deque)
    )

    def fail_next(self, resource_path: str, error: BaseException, *, times: int = 1) -> None:
        for _ in range(max(1, int(times))):
            self._failures[resource_path].append(error)

    def fetch_calls(self, resource_path: str | None = None) -> list[RemoteCall]:
        return [
            c
            for c in self.calls
            if c.op == "fetch" and (resource_path is None or c.resource_path == resource_path)
        ]

    def mutate_calls(self) -> list[RemoteCall]:
        return [c for c in self.calls if c.op == "mutate"]

    async def fetch_page(
        self,
        resource_path: str,
        params: Mapping[str, Any],
        *,
        method: str = "GET",
    ) -> Any:
        self.calls.append(RemoteCall("fetch", method.upper(), resource_path, dict(params)))
        await self._wait()
        self._raise_queued(resource_path)

        items = self._filtered(self.collections.get(resource_path, []), params)
        page = max(1, int(params.get(self.page_param, 1)))
        limit = self._limit(params, default=len(items) or 1)

        start = (page - 1) * limit
        chunk = [dict(item) for item in items[start : start + limit]]

        if resource_path in self.bare_list_paths:
            return chunk
        return {"page": page, "total": len(items), "items": chunk}

    async def mutate(
        self,
        resource_path: str,
        payload: Mapping[str, Any],
        *,
        method: str = "POST",
    ) -> Any:
        verb = method.upper()
        self.calls.append(RemoteCall("mutate", verb, resource_path, dict(payload)))
        await self._wait()
        self._raise_queued(resource_path)

        if verb == "DELETE":
            target = _numeric_suffix(resource_path)
            if target is not None:
                for path, rows in self.collections.items():
                    self.collections[path] = [r for r in rows if r.get("id") != target]
        elif verb == "PATCH" and "noti_id" in payload:
            for row in self.collections.get(resource_path, []):
                if row.get("id") == payload["noti_id"]:
                    row["is_read"] = True

        return {"ok": True}

    async def _wait(self) -> None:
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        if self.gate is not None:
            await self.gate.wait()

    def _raise_queued(self, resource_path: str) -> None:
        queue = self._failures.get(resource_path)
        if queue:
            raise queue.popleft()

    def _limit(self, params: Mapping[str, Any], *, default: int) -> int:
        for name in self.limit_params:
            if params.get(name) is not None:
                return max(1, int(params[name]))
        return default

    @staticmethod
    def _filtered(rows: Sequence[dict[str, Any]], params: Mapping[str, Any]) -> list[dict[str, Any]]:
        out = list(rows)
        building = params.get("building")
        if building is not None:
            out = [r for r in out if r.get("building") == building]
        floor = params.get("floor")
        if floor is not None:
            out = [r for r in out if str(r.get("post_floor")) == str(floor)]
        status = params.get("status")
        if status is not None:
            out = [r for r in out if r.get("post_status") == status]
        return out


def offline_remote(endpoints: EndpointsConfig, *, now: datetime | None = None) -> InMemoryRemoteCollection:
    # The notification endpoint answers with a bare list, like the real one.
    return InMemoryRemoteCollection(
        collections=default_collections(endpoints, now=now),
        bare_list_paths=(endpoints.notifications,),
    )
