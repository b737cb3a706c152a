from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class StorageError(RuntimeError):
    """Raised when reading or writing snapshots in SQLite fails."""


class SyncError(RuntimeError):
    """Base class for failures inside the list synchronization engine."""


class NetworkError(SyncError):
    """No response from the remote collection (connection failure or timeout)."""


class ServerError(SyncError):
    """The remote collection answered with a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotFoundError(SyncError):
    """A mutation target is not present in the local store."""

    def __init__(self, record_id: object) -> None:
        super().__init__(f"Record not found in local store: {record_id!r}")
        self.record_id = record_id


class ValidationError(SyncError):
    """A fetched page does not have the expected shape."""
