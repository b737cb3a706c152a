from __future__ import annotations

import unittest
from typing import Callable
from urllib.parse import parse_qs

import httpx

from lostfound_sync.errors import NetworkError, ServerError, ValidationError
from lostfound_sync.remote import HttpRemoteCollection
from lostfound_sync.retry import RetryConfig, RetryEvent, call_with_retries, worst_case_seconds
from lostfound_sync.remote_retry import is_retryable_remote_exception

_BASE = "https://lostfound.example.edu"


async def _no_sleep(_: float) -> None:
    return None


def _remote(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    max_attempts: int = 3,
    events: list[RetryEvent] | None = None,
) -> HttpRemoteCollection:
    client = httpx.AsyncClient(base_url=_BASE, transport=httpx.MockTransport(handler))
    return HttpRemoteCollection(
        _BASE,
        token="secret",
        client=client,
        retry=RetryConfig(max_attempts=max_attempts, base_delay_seconds=0.0, max_delay_seconds=0.0),
        on_retry=events.append if events is not None else None,
        sleep_fn=_no_sleep,
    )


class TestHttpRemoteCollection(unittest.IsolatedAsyncioTestCase):
    async def test_get_sends_query_and_bearer(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"id": 1, "title": "x"}])

        async with _remote(handler) as remote:
            body = await remote.fetch_page("/others/notifications", {"page": 2, "number": 10, "skip": None})

        self.assertEqual(body, [{"id": 1, "title": "x"}])
        req = seen[0]
        self.assertEqual(req.method, "GET")
        self.assertEqual(req.url.path, "/others/notifications")
        self.assertEqual(dict(req.url.params), {"page": "2", "number": "10"})
        self.assertEqual(req.headers["Authorization"], "Bearer secret")

    async def test_post_sends_form_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"page": 1, "total": 0, "posts": []})

        async with _remote(handler) as remote:
            await remote.fetch_page("/posts/dashboard", {"page": 1, "limit": 10}, method="POST")
            await remote.mutate("/threads/follow", {"thread_id": 4, "follow": True})

        form = parse_qs(seen[1].content.decode("utf-8"))
        self.assertEqual(seen[0].method, "POST")
        self.assertEqual(form, {"thread_id": ["4"], "follow": ["true"]})

    async def test_patch_and_delete_use_query(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        async with _remote(handler) as remote:
            ack = await remote.mutate("/others/notifications", {"noti_id": 9}, method="PATCH")
            await remote.mutate("/posts/9", {}, method="DELETE")

        self.assertIsNone(ack)
        self.assertEqual(dict(seen[0].url.params), {"noti_id": "9"})
        self.assertEqual(seen[1].method, "DELETE")

    async def test_client_error_surfaces_server_message(self) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(403, json={"detail": "Not the owner of this post"})

        async with _remote(handler) as remote:
            with self.assertRaises(ServerError) as ctx:
                await remote.mutate("/posts/1", {}, method="DELETE")

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.message, "Not the owner of this post")
        self.assertEqual(len(calls), 1)

    async def test_server_errors_are_retried(self) -> None:
        responses = [httpx.Response(503, text="busy"), httpx.Response(200, json=[])]
        events: list[RetryEvent] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        async with _remote(handler, events=events) as remote:
            body = await remote.fetch_page("/posts/me", {"page": 1})

        self.assertEqual(body, [])
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].reason, "http_503")

    async def test_connection_failure_becomes_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _remote(handler, max_attempts=2) as remote:
            with self.assertRaises(NetworkError):
                await remote.fetch_page("/posts/me", {"page": 1})

    async def test_non_json_page_is_invalid(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        async with _remote(handler) as remote:
            with self.assertRaises(ValidationError):
                await remote.fetch_page("/posts/me", {"page": 1})


class TestRetryPolicy(unittest.IsolatedAsyncioTestCase):
    def test_classification(self) -> None:
        self.assertEqual(is_retryable_remote_exception(NetworkError("x")), (True, "network_error"))
        self.assertEqual(is_retryable_remote_exception(ServerError("x", status_code=429)), (True, "http_429"))
        self.assertEqual(is_retryable_remote_exception(ServerError("x", status_code=404)), (False, "http_404"))
        self.assertEqual(is_retryable_remote_exception(ValueError("x")), (False, None))

    async def test_gives_up_after_max_attempts(self) -> None:
        attempts: list[int] = []

        async def fn() -> None:
            attempts.append(1)
            raise NetworkError("down")

        with self.assertRaises(NetworkError):
            await call_with_retries(
                fn,
                cfg=RetryConfig(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0),
                is_retryable=is_retryable_remote_exception,
                operation="test",
                sleep_fn=_no_sleep,
            )
        self.assertEqual(len(attempts), 3)

    def test_config_validation(self) -> None:
        with self.assertRaises(ValueError):
            RetryConfig(max_attempts=0)
        with self.assertRaises(ValueError):
            RetryConfig(base_delay_seconds=2.0, max_delay_seconds=1.0)

    def test_worst_case_covers_every_attempt_and_backoff(self) -> None:
        # 3 x 15s attempts, then 0.5s and 1.0s backoffs at +25% jitter.
        self.assertAlmostEqual(worst_case_seconds(RetryConfig(), attempt_timeout=15.0), 46.875)
        self.assertAlmostEqual(
            worst_case_seconds(RetryConfig(max_attempts=1), attempt_timeout=10.0), 10.0
        )
        self.assertAlmostEqual(
            worst_case_seconds(
                RetryConfig(max_attempts=5, base_delay_seconds=1.0, max_delay_seconds=2.0, jitter_ratio=0.0),
                attempt_timeout=1.0,
            ),
            5.0 + 1.0 + 2.0 + 2.0 + 2.0,
        )


if __name__ == "__main__":
    unittest.main()
