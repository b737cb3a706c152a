from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Hashable, Protocol, Sequence, Union

RecordId = Union[int, str]


class PostStatus(str, Enum):
    OPEN = "OPEN"
    WITH_SECURITY = "WITH_SECURITY"
    RETURNED = "RETURNED"
    PENDING = "PENDING"
    ARCHIVED = "ARCHIVED"


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    UNRESOLVED = "UNRESOLVED"
    RESOLVED = "RESOLVED"


class Record(Protocol):
    @property
    def id(self) -> Hashable: ...


@dataclass(frozen=True)
class Post:
    """A lost/found item post as shown in the building feeds."""

    id: int
    title: str
    building: str | None = None
    floor: str | None = None
    room: str | None = None
    found_at: datetime | None = None
    description: str | None = None
    image_refs: Sequence[str] = ()
    owner_id: int | None = None
    status: PostStatus = PostStatus.OPEN
    thread_id: int | None = None


@dataclass(frozen=True)
class Notification:
    id: int
    title: str
    message: str | None = None
    created_at: datetime | None = None
    is_read: bool = False
    # Lookup only; the post may not be in any local store.
    related_post_id: int | None = None


@dataclass(frozen=True)
class Report:
    """An admin-facing report filed against a post."""

    id: int
    title: str
    message: str | None = None
    created_at: datetime | None = None
    status: ReportStatus = ReportStatus.PENDING
    reporter_id: int | None = None
    reporter_alias: str | None = None


AnyRecord = Union[Post, Notification, Report]


def record_timestamp(record: object) -> datetime | None:
    """Return the time a record is filtered by: found_at for posts, created_at otherwise."""
    ts = getattr(record, "found_at", None)
    if ts is None:
        ts = getattr(record, "created_at", None)
    return ts if isinstance(ts, datetime) else None
