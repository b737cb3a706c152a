from __future__ import annotations

from .config import load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, SyncError
from .list_controller import ListController, ListState, open_feed
from .notifications import NotificationFeed
from .record_store import RecordStore
from .views import ViewCriteria

__all__ = [
    "AppConfig",
    "ConfigError",
    "ListController",
    "ListState",
    "NotificationFeed",
    "RecordStore",
    "SyncError",
    "ViewCriteria",
    "load_config",
    "open_feed",
    "resolve_runtime_secrets",
]
