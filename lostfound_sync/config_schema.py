from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

ALL_TAB = "All"


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


def _validate_path(value: str) -> str:
    path = (value or "").strip()
    if not path.startswith("/"):
        raise ValueError("must start with '/'")
    return path


PositiveInt = Annotated[int, Field(ge=1)]
PositiveFloat = Annotated[float, Field(gt=0)]


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: str = "http://localhost:8000"
    token_env: str = "LOSTFOUND_TOKEN"
    timeout_seconds: PositiveFloat = 15.0
    max_attempts: PositiveInt = 3

    @field_validator("token_env")
    @classmethod
    def _token_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("base_url")
    @classmethod
    def _base_url_must_be_http(cls, v: str) -> str:
        url = (v or "").strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return url


class PagingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    page_size: PositiveInt = 10


class EndpointsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    posts: str = "/posts/dashboard"
    my_posts: str = "/posts/me"
    reports: str = "/others/reports"
    notifications: str = "/others/notifications"
    follow: str = "/threads/follow"
    delete_post: str = "/posts/{id}"

    @field_validator("posts", "my_posts", "reports", "notifications", "follow", "delete_post")
    @classmethod
    def _paths_must_be_absolute(cls, v: str) -> str:
        return _validate_path(v)


class PersistenceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    snapshot_path: str = "state/snapshots.sqlite"
    notification_key: str = "notification-storage"

    @field_validator("notification_key")
    @classmethod
    def _key_non_empty(cls, v: str) -> str:
        key = (v or "").strip()
        if not key:
            raise ValueError("must be non-empty")
        return key


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    api: ApiConfig = Field(default_factory=ApiConfig)
    paging: PagingConfig = Field(default_factory=PagingConfig)
    endpoints: EndpointsConfig = Field(default_factory=EndpointsConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    buildings: list[str] = Field(default_factory=lambda: [ALL_TAB, "H1", "H2", "H3", "H6"])

    @field_validator("buildings")
    @classmethod
    def _normalize_buildings(cls, v: list[str]) -> list[str]:
        out: list[str] = []
        seen: set[str] = set()
        for item in v:
            name = (item or "").strip()
            if not name or name in seen:
                continue
            seen.add(name)
            out.append(name)
        if ALL_TAB not in seen:
            out.insert(0, ALL_TAB)
        return out
