from __future__ import annotations

from typing import Any, Mapping, Protocol

import httpx

from .errors import NetworkError, ServerError, ValidationError
from .remote_retry import is_retryable_remote_exception
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries


class RemoteCollection(Protocol):
    """The capability the engine needs from the backend."""

    async def fetch_page(
        self,
        resource_path: str,
        params: Mapping[str, Any],
        *,
        method: str = "GET",
    ) -> Any: ...

    async def mutate(
        self,
        resource_path: str,
        payload: Mapping[str, Any],
        *,
        method: str = "POST",
    ) -> Any: ...


_QUERY_METHODS = ("GET", "DELETE", "PATCH")


def _clean_params(params: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            out[key] = "true" if value else "false"
        else:
            out[key] = value
    return out


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None

    if isinstance(body, Mapping):
        for key in ("detail", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()

    text = (resp.text or "").strip()
    return text[:500] if text else f"HTTP {resp.status_code}"


class HttpRemoteCollection:
    """
    RemoteCollection over the service's HTTP API.

    GET, DELETE and PATCH carry params in the query string; POST sends them as a
    form body, which is what the dashboard and reports endpoints expect.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
        retry: RetryConfig | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        self._retry = retry or RetryConfig()
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if client is not None:
            self._client = client
            self._client.headers.update(headers)
        else:
            self._client = httpx.AsyncClient(
                base_url=base_url,
                headers=headers,
                timeout=timeout_seconds,
            )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpRemoteCollection":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.aclose()

    async def fetch_page(
        self,
        resource_path: str,
        params: Mapping[str, Any],
        *,
        method: str = "GET",
    ) -> Any:
        resp = await self._send(method, resource_path, params)
        try:
            return resp.json()
        except ValueError as e:
            raise ValidationError(f"{method} {resource_path} returned a non-JSON body") from e

    async def mutate(
        self,
        resource_path: str,
        payload: Mapping[str, Any],
        *,
        method: str = "POST",
    ) -> Any:
        resp = await self._send(method, resource_path, payload)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return resp.text

    async def _send(self, method: str, path: str, params: Mapping[str, Any]) -> httpx.Response:
        verb = (method or "GET").strip().upper()
        cleaned = _clean_params(params)

        async def _do_request() -> httpx.Response:
            try:
                if verb in _QUERY_METHODS:
                    resp = await self._client.request(verb, path, params=cleaned)
                else:
                    resp = await self._client.request(verb, path, data=cleaned)
            except httpx.TimeoutException as e:
                raise NetworkError(f"{verb} {path} timed out") from e
            except httpx.TransportError as e:
                raise NetworkError(f"{verb} {path} failed: {e}") from e

            if resp.status_code >= 400:
                raise ServerError(_error_message(resp), status_code=resp.status_code)
            return resp

        return await call_with_retries(
            _do_request,
            cfg=self._retry,
            is_retryable=is_retryable_remote_exception,
            operation=f"{verb} {path}",
            on_retry=self._on_retry,
            sleep_fn=self._sleep_fn,
        )
