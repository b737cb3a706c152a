from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .config_schema import AppConfig
from .page_schema import RecordKind
from .records import PostStatus
from .views import ViewCriteria

FEED_NAMES = ("home", "archived", "my_posts", "reports", "notifications")

_ACTIVE_STATUSES = (
    PostStatus.OPEN.value,
    PostStatus.WITH_SECURITY.value,
    PostStatus.PENDING.value,
    PostStatus.RETURNED.value,
)


@dataclass(frozen=True)
class FeedSpec:
    """Where and how one list screen fetches its pages."""

    name: str
    kind: RecordKind
    resource_path: str
    method: str = "GET"
    page_param: str = "page"
    limit_param: str = "limit"
    base_params: Mapping[str, Any] = field(default_factory=dict)
    statuses: tuple[str, ...] = ()

    def default_criteria(self) -> ViewCriteria:
        return ViewCriteria(statuses=frozenset(self.statuses) if self.statuses else None)

    def request_params(self, *, page: int, page_size: int, criteria: ViewCriteria) -> dict[str, Any]:
        params: dict[str, Any] = dict(self.base_params)
        params.update(criteria.server_params())
        params[self.page_param] = int(page)
        params[self.limit_param] = int(page_size)
        return params


def build_feed_specs(config: AppConfig) -> dict[str, FeedSpec]:
    ep = config.endpoints
    specs = [
        FeedSpec(
            name="home",
            kind="post",
            resource_path=ep.posts,
            method="POST",
            statuses=_ACTIVE_STATUSES,
        ),
        FeedSpec(
            name="archived",
            kind="post",
            resource_path=ep.posts,
            method="POST",
            base_params={"status": PostStatus.ARCHIVED.value},
            statuses=(PostStatus.ARCHIVED.value,),
        ),
        FeedSpec(name="my_posts", kind="post", resource_path=ep.my_posts),
        FeedSpec(
            name="reports",
            kind="report",
            resource_path=ep.reports,
            method="POST",
        ),
        FeedSpec(
            name="notifications",
            kind="notification",
            resource_path=ep.notifications,
            limit_param="number",
        ),
    ]
    return {s.name: s for s in specs}
