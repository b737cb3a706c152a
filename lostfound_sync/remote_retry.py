from __future__ import annotations

from .errors import NetworkError, ServerError


def is_retryable_remote_exception(exc: BaseException) -> tuple[bool, str | None]:
    """
    Retry policy for the remote collection:
    - no response (connection failure, timeout)
    - HTTP 429
    - HTTP 500+
    """
    if isinstance(exc, NetworkError):
        return True, "network_error"

    if isinstance(exc, ServerError):
        code = exc.status_code
        reason = f"http_{code}" if code is not None else "http_status"
        if code == 429 or (isinstance(code, int) and code >= 500):
            return True, reason
        return False, reason

    return False, None
