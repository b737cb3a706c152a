from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .records import AnyRecord, Notification, Post, PostStatus, Report, ReportStatus

RecordKind = Literal["post", "notification", "report"]

# Envelope keys that may carry the item list, in lookup order.
_ITEM_KEYS = ("items", "posts", "notifications", "reports", "data")


@dataclass(frozen=True)
class PageSnapshot:
    """One validated page: the unit returned by a single page fetch."""

    page: int
    total_count: int | None
    items: tuple[AnyRecord, ...]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    raise ValueError("must be a string")


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class PostPayload(_WireModel):
    id: int
    title: str
    building: str | None = None
    floor: str | None = Field(None, validation_alias=AliasChoices("post_floor", "floor"))
    room: str | None = Field(None, validation_alias=AliasChoices("nearest_room", "room"))
    found_at: datetime | None = None
    description: str | None = Field(
        None, validation_alias=AliasChoices("post_description", "description")
    )
    images: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("images", "image_refs")
    )
    owner_id: int | None = Field(
        None, validation_alias=AliasChoices("usr_id", "user_id", "owner_id")
    )
    status: PostStatus = Field(
        PostStatus.OPEN, validation_alias=AliasChoices("post_status", "status")
    )
    thread_id: int | None = None

    @field_validator("building", "floor", "room", "description", mode="before")
    @classmethod
    def _strings(cls, v: Any) -> str | None:
        return _coerce_str(v)

    @field_validator("images", mode="before")
    @classmethod
    def _image_urls(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v.strip()] if v.strip() else []
        if not isinstance(v, list):
            raise ValueError("images must be a list or a string")

        out: list[str] = []
        for item in v:
            if isinstance(item, Mapping):
                item = item.get("url")
            if isinstance(item, str) and item.strip():
                out.append(item.strip())
        return out

    @field_validator("status", mode="before")
    @classmethod
    def _status_upper(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    def to_record(self) -> Post:
        return Post(
            id=self.id,
            title=self.title,
            building=self.building,
            floor=self.floor,
            room=self.room,
            found_at=_as_utc(self.found_at) if self.found_at else None,
            description=self.description,
            image_refs=tuple(self.images),
            owner_id=self.owner_id,
            status=self.status,
            thread_id=self.thread_id,
        )


class NotificationPayload(_WireModel):
    id: int
    title: str
    message: str | None = Field(None, validation_alias=AliasChoices("noti_message", "message"))
    created_at: datetime | None = Field(
        None, validation_alias=AliasChoices("time_created", "created_at")
    )
    is_read: bool = False
    related_post_id: int | None = Field(
        None, validation_alias=AliasChoices("post_id", "related_post_id")
    )

    def to_record(self) -> Notification:
        return Notification(
            id=self.id,
            title=self.title,
            message=self.message,
            created_at=_as_utc(self.created_at) if self.created_at else None,
            is_read=self.is_read,
            related_post_id=self.related_post_id,
        )


class _Reporter(_WireModel):
    id: int | None = None
    alias: str | None = None


class ReportPayload(_WireModel):
    id: int
    title: str
    message: str | None = Field(None, validation_alias=AliasChoices("report_message", "message"))
    created_at: datetime | None = Field(
        None, validation_alias=AliasChoices("time_created", "created_at")
    )
    status: ReportStatus = ReportStatus.PENDING
    user: _Reporter | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _status_upper(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    def to_record(self) -> Report:
        return Report(
            id=self.id,
            title=self.title,
            message=self.message,
            created_at=_as_utc(self.created_at) if self.created_at else None,
            status=self.status,
            reporter_id=self.user.id if self.user else None,
            reporter_alias=self.user.alias if self.user else None,
        )


_PAYLOAD_MODELS: dict[str, type[PostPayload] | type[NotificationPayload] | type[ReportPayload]] = {
    "post": PostPayload,
    "notification": NotificationPayload,
    "report": ReportPayload,
}


def _format_errors(err: PydanticValidationError, *, index: int) -> str:
    parts: list[str] = []
    for item in err.errors():
        loc = ".".join(str(p) for p in item.get("loc", [])) or "<root>"
        parts.append(f"items[{index}].{loc}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


def parse_records(raw_items: Sequence[Any], kind: RecordKind) -> tuple[AnyRecord, ...]:
    """
    Validate a list of wire items into records.

    A single malformed item rejects the whole list so a bad page never reaches a merge.
    """
    model = _PAYLOAD_MODELS.get(kind)
    if model is None:
        raise ValueError(f"unknown record kind: {kind}")

    out: list[AnyRecord] = []
    for i, item in enumerate(raw_items):
        if not isinstance(item, Mapping):
            raise ValidationError(f"items[{i}] must be an object, got {type(item).__name__}")
        try:
            out.append(model.model_validate(dict(item)).to_record())
        except PydanticValidationError as e:
            raise ValidationError(_format_errors(e, index=i)) from e
    return tuple(out)


def _coerce_count(value: Any, *, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f"{name} must be an integer")
    try:
        n = int(value)
    except ValueError as e:
        raise ValidationError(f"{name} must be an integer") from e
    if n < 0:
        raise ValidationError(f"{name} must be >= 0")
    return n


def parse_page(raw: Any, kind: RecordKind, *, requested_page: int) -> PageSnapshot:
    """
    Turn a raw page response into a PageSnapshot.

    Accepts `{page, total, <items key>: [...]}` envelopes as well as bare lists
    (endpoints that do not report a total).
    """
    if isinstance(raw, list):
        return PageSnapshot(
            page=requested_page,
            total_count=None,
            items=parse_records(raw, kind),
        )

    if not isinstance(raw, Mapping):
        raise ValidationError(f"page must be an object or a list, got {type(raw).__name__}")

    key = next((k for k in _ITEM_KEYS if k in raw), None)
    if key is None:
        # e.g. {"detail": "maintenance"} served with a 2xx status
        raise ValidationError(
            f"page has no items list (expected one of: {', '.join(_ITEM_KEYS)})"
        )

    raw_items = raw[key]
    if not isinstance(raw_items, list):
        raise ValidationError("page items must be a list")

    page = _coerce_count(raw.get("page"), name="page")
    total = _coerce_count(raw.get("total", raw.get("total_count")), name="total")

    return PageSnapshot(
        page=page if page is not None else requested_page,
        total_count=total,
        items=parse_records(raw_items, kind),
    )


def record_to_wire(record: AnyRecord) -> dict[str, Any]:
    """Serialize a record back into the wire shape accepted by `parse_records`."""

    def _ts(value: datetime | None) -> str | None:
        return value.isoformat() if value is not None else None

    if isinstance(record, Post):
        return {
            "id": record.id,
            "title": record.title,
            "building": record.building,
            "post_floor": record.floor,
            "nearest_room": record.room,
            "found_at": _ts(record.found_at),
            "post_description": record.description,
            "images": [{"url": u} for u in record.image_refs],
            "usr_id": record.owner_id,
            "post_status": record.status.value,
            "thread_id": record.thread_id,
        }
    if isinstance(record, Notification):
        return {
            "id": record.id,
            "title": record.title,
            "noti_message": record.message,
            "time_created": _ts(record.created_at),
            "is_read": record.is_read,
            "post_id": record.related_post_id,
        }
    if isinstance(record, Report):
        return {
            "id": record.id,
            "title": record.title,
            "report_message": record.message,
            "time_created": _ts(record.created_at),
            "status": record.status.value,
            "user": {"id": record.reporter_id, "alias": record.reporter_alias},
        }
    raise TypeError(f"unsupported record type: {type(record).__name__}")
