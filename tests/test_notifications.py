from __future__ import annotations

import json
import unittest
from typing import Any

from lostfound_sync.config_schema import AppConfig
from lostfound_sync.errors import NetworkError
from lostfound_sync.notifications import NotificationFeed
from lostfound_sync.offline import InMemoryRemoteCollection
from lostfound_sync.pager import LoadResult
from lostfound_sync.persistence import SQLiteSnapshotStore

_PATH = "/others/notifications"
_KEY = "notification-storage"


def _rows() -> list[dict[str, Any]]:
    return [
        {"id": 1, "title": "Item claimed", "noti_message": "a", "is_read": False, "post_id": 11},
        {"id": 2, "title": "Item returned", "noti_message": "b", "is_read": False, "post_id": 12},
        {"id": 3, "title": "Item archived", "noti_message": "c", "is_read": True, "post_id": 13},
    ]


def _remote() -> InMemoryRemoteCollection:
    return InMemoryRemoteCollection(collections={_PATH: _rows()}, bare_list_paths=(_PATH,))


class TestNotificationFeed(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.storage = SQLiteSnapshotStore.open(":memory:")
        self.config = AppConfig()

    async def asyncTearDown(self) -> None:
        self.storage.close()

    def _seed_snapshot(self) -> None:
        self.storage.write(
            _KEY,
            kind="notification",
            items=[{"id": 90, "title": "Saved earlier", "is_read": False}],
        )

    async def test_snapshot_is_shown_until_first_page_replaces_it(self) -> None:
        self._seed_snapshot()
        feed = NotificationFeed(_remote(), self.config, storage=self.storage)

        task = feed.load_first()
        self.assertEqual(feed.store.ids(), [90])

        self.assertEqual(await task, LoadResult.LOADED)
        self.assertEqual(feed.store.ids(), [1, 2, 3])

        await feed.flush()
        row = self.storage.read(_KEY)
        assert row is not None
        self.assertEqual([item["id"] for item in json.loads(row.payload_json)], [1, 2, 3])

    async def test_failed_refresh_keeps_restored_items(self) -> None:
        self._seed_snapshot()
        remote = _remote()
        remote.fail_next(_PATH, NetworkError("offline"))
        feed = NotificationFeed(remote, self.config, storage=self.storage)

        self.assertEqual(await feed.load_first(), LoadResult.FAILED)

        state = feed.state()
        self.assertIsInstance(state.error, NetworkError)
        self.assertEqual([n.id for n in state.items], [90])
        self.assertEqual(feed.unread_count(), 1)

    async def test_mark_all_read_is_persisted(self) -> None:
        remote = _remote()
        feed = NotificationFeed(remote, self.config, storage=self.storage)
        await feed.load_first()
        self.assertEqual(feed.unread_count(), 2)

        results = await feed.mark_all_read()
        await feed.flush()

        self.assertTrue(all(r.ok for r in results))
        self.assertEqual(feed.unread_count(), 0)
        assert feed.gateway is not None
        self.assertTrue(all(n.is_read for n in feed.gateway.load()))
        self.assertEqual(
            [c.params for c in remote.mutate_calls()],
            [{"noti_id": 1}, {"noti_id": 2}],
        )

    async def test_open_notification_returns_related_post(self) -> None:
        feed = NotificationFeed(_remote(), self.config, storage=self.storage)
        await feed.load_first()

        task, post_id = feed.open_notification(2)
        result = await task

        self.assertEqual(post_id, 12)
        self.assertTrue(result.ok)
        self.assertTrue(feed.store.get(2).is_read)

    async def test_works_without_storage(self) -> None:
        remote = _remote()
        feed = NotificationFeed(remote, self.config)

        self.assertEqual(feed.hydrate(), 0)
        await feed.load_first()
        await feed.flush()

        self.assertEqual(len(feed.store), 3)
        self.assertIsNone(feed.gateway)
        self.assertEqual(remote.fetch_calls()[0].params, {"page": 1, "number": 10})


if __name__ == "__main__":
    unittest.main()
