from __future__ import annotations

import json
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, TextIO


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _truncate(text: str, *, limit: int) -> str:
    s = str(text or "")
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 1)] + "…"


class RunLogger:
    """
    Tiny JSONL event log shared by every list screen of a session.

    Each line is a single JSON object: ts, level, event, session_id, and the
    optional screen and data fields.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        stream: TextIO | None = None,
        overwrite: bool = True,
        session_id: str | None = None,
    ) -> None:
        if path is None and stream is None:
            raise ValueError("either path or stream is required")

        self._path = Path(path) if path is not None else None
        self._overwrite = bool(overwrite)
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._fp: TextIO | None = stream
        self._owns_fp = stream is None
        self._lock = Lock()
        self._opened = stream is not None

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        overwrite: bool = True,
        session_id: str | None = None,
    ) -> "RunLogger":
        logger = cls(path, overwrite=overwrite, session_id=session_id)
        logger._ensure_open()
        return logger

    @property
    def session_id(self) -> str:
        return self._session_id

    def close(self) -> None:
        with self._lock:
            if self._fp is not None:
                try:
                    self._fp.flush()
                finally:
                    if self._owns_fp:
                        self._fp.close()
                self._fp = None

    def __enter__(self) -> "RunLogger":
        self._ensure_open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def for_screen(self, screen: str) -> "ScreenLog":
        return ScreenLog(self, screen)

    def info(self, event: str, *, screen: str | None = None, **data: Any) -> None:
        self.log("INFO", event, screen=screen, **data)

    def warning(self, event: str, *, screen: str | None = None, **data: Any) -> None:
        self.log("WARN", event, screen=screen, **data)

    def error(self, event: str, *, screen: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, screen=screen, **data)

    def exception(
        self,
        event: str,
        *,
        exc: BaseException,
        screen: str | None = None,
        **data: Any,
    ) -> None:
        err = {
            "type": type(exc).__name__,
            "message": _truncate(str(exc), limit=2000),
            "traceback": _truncate(
                "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                limit=12000,
            ),
        }
        self.log("ERROR", event, screen=screen, error=err, **data)

    def log(self, level: str, event: str, *, screen: str | None = None, **data: Any) -> None:
        record: dict[str, Any] = {
            "ts": _utc_now_iso(),
            "level": (level or "").strip().upper() or "INFO",
            "event": (event or "").strip() or "event",
            "session_id": self._session_id,
        }

        s = (screen or "").strip()
        if s:
            record["screen"] = s

        if data:
            record["data"] = data

        self._write(record)

    def _ensure_open(self) -> None:
        if self._fp is not None or self._path is None:
            return

        with self._lock:
            if self._fp is not None:
                return

            self._path.parent.mkdir(parents=True, exist_ok=True)
            mode = "w" if self._overwrite and not self._opened else "a"
            self._fp = self._path.open(mode, encoding="utf-8", newline="\n")
            self._opened = True

    def _write(self, record: dict[str, Any]) -> None:
        self._ensure_open()

        payload = json.dumps(
            record,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )

        with self._lock:
            if self._fp is None:
                return
            self._fp.write(payload + "\n")
            self._fp.flush()


class ScreenLog:
    """RunLogger view that stamps every event with one screen name."""

    def __init__(self, parent: RunLogger, screen: str) -> None:
        self._parent = parent
        self._screen = screen

    @property
    def screen(self) -> str:
        return self._screen

    def info(self, event: str, **data: Any) -> None:
        self._parent.info(event, screen=self._screen, **data)

    def warning(self, event: str, **data: Any) -> None:
        self._parent.warning(event, screen=self._screen, **data)

    def error(self, event: str, **data: Any) -> None:
        self._parent.error(event, screen=self._screen, **data)

    def exception(self, event: str, *, exc: BaseException, **data: Any) -> None:
        self._parent.exception(event, exc=exc, screen=self._screen, **data)
