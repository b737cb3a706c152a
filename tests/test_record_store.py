from __future__ import annotations

import unittest

from lostfound_sync.page_schema import PageSnapshot
from lostfound_sync.record_store import MergeMode, RecordStore, StoreSignal, merge
from lostfound_sync.records import Post


def _post(post_id: int, title: str | None = None, building: str = "H1") -> Post:
    return Post(id=post_id, title=title or f"post {post_id}", building=building)


def _page(page: int, posts: list[Post], total: int | None = None) -> PageSnapshot:
    return PageSnapshot(page=page, total_count=total, items=tuple(posts))


class TestMerge(unittest.TestCase):
    def test_append_keeps_first_slot_and_last_value(self) -> None:
        existing = [_post(1), _post(2)]
        incoming = [_post(2, "updated"), _post(3)]

        out = merge(existing, incoming, MergeMode.APPEND)

        self.assertEqual([p.id for p in out], [1, 2, 3])
        self.assertEqual(out[1].title, "updated")

    def test_replace_first_page_drops_existing(self) -> None:
        out = merge([_post(9), _post(8)], [_post(1), _post(2)], MergeMode.REPLACE_FIRST_PAGE)
        self.assertEqual([p.id for p in out], [1, 2])

    def test_duplicates_inside_one_page_collapse(self) -> None:
        out = merge([], [_post(1, "a"), _post(2), _post(1, "b")], MergeMode.REPLACE_FIRST_PAGE)

        self.assertEqual([p.id for p in out], [1, 2])
        self.assertEqual(out[0].title, "b")

    def test_append_is_idempotent(self) -> None:
        page = [_post(3), _post(4)]
        once = merge([_post(1), _post(2)], page, MergeMode.APPEND)
        twice = merge(once, page, MergeMode.APPEND)
        self.assertEqual(once, twice)

    def test_existing_order_is_stable(self) -> None:
        existing = [_post(5), _post(3), _post(1)]
        out = merge(existing, [_post(2), _post(3)], MergeMode.APPEND)
        self.assertEqual([p.id for p in out][:3], [5, 3, 1])


class TestRecordStore(unittest.TestCase):
    def test_paged_merge_scenario(self) -> None:
        store = RecordStore()
        store.merge_page(_page(1, [_post(1), _post(2), _post(3)], total=5), MergeMode.REPLACE_FIRST_PAGE)
        store.merge_page(_page(2, [_post(3, "fresh"), _post(4), _post(5)]), MergeMode.APPEND)

        self.assertEqual(store.ids(), [1, 2, 3, 4, 5])
        self.assertEqual(store.get(3).title, "fresh")
        self.assertEqual(store.total_count, 5)
        self.assertEqual(store.fetched_count, 6)

    def test_first_page_resets_counts(self) -> None:
        store = RecordStore()
        store.merge_page(_page(1, [_post(1)], total=10), MergeMode.REPLACE_FIRST_PAGE)
        store.merge_page(_page(2, [_post(2)], total=99), MergeMode.APPEND)
        self.assertEqual(store.total_count, 10)

        store.merge_page(_page(1, [_post(7)], total=3), MergeMode.REPLACE_FIRST_PAGE)
        self.assertEqual(store.ids(), [7])
        self.assertEqual(store.total_count, 3)
        self.assertEqual(store.fetched_count, 1)

    def test_seed_is_replaced_by_first_page(self) -> None:
        store = RecordStore()
        store.seed([_post(1), _post(2)])
        self.assertEqual(store.fetched_count, 0)
        self.assertIsNone(store.total_count)

        store.merge_page(_page(1, [_post(2), _post(3)], total=2), MergeMode.REPLACE_FIRST_PAGE)
        self.assertEqual(store.ids(), [2, 3])

    def test_apply_mutation_and_missing_target(self) -> None:
        store = RecordStore([_post(1)])

        signal = store.apply_mutation(1, lambda p: Post(id=p.id, title="renamed"))
        self.assertEqual(signal, StoreSignal.OK)
        self.assertEqual(store.get(1).title, "renamed")

        self.assertEqual(store.apply_mutation(42, lambda p: p), StoreSignal.NOT_FOUND)

    def test_apply_mutation_rejects_id_change(self) -> None:
        store = RecordStore([_post(1)])
        with self.assertRaises(ValueError):
            store.apply_mutation(1, lambda p: _post(2))

    def test_evict_and_insert_at(self) -> None:
        store = RecordStore([_post(1), _post(2), _post(3)])
        removed = store.get(2)

        self.assertEqual(store.evict(2), StoreSignal.OK)
        self.assertEqual(store.ids(), [1, 3])
        self.assertEqual(store.evict(2), StoreSignal.NOT_FOUND)

        store.insert_at(1, removed)
        self.assertEqual(store.ids(), [1, 2, 3])

    def test_insert_at_clamps_and_never_duplicates(self) -> None:
        store = RecordStore([_post(1)])
        store.insert_at(50, _post(2))
        self.assertEqual(store.ids(), [1, 2])

        store.insert_at(0, _post(2, "again"))
        self.assertEqual(store.ids(), [1, 2])
        self.assertEqual(store.get(2).title, "again")

    def test_listeners_see_every_change(self) -> None:
        store = RecordStore()
        seen: list[int] = []
        listener = lambda s: seen.append(len(s))  # noqa: E731
        store.add_listener(listener)

        store.merge_page(_page(1, [_post(1), _post(2)]), MergeMode.REPLACE_FIRST_PAGE)
        store.evict(1)
        store.remove_listener(listener)
        store.evict(2)

        self.assertEqual(seen, [2, 1])

    def test_contains_uses_ids(self) -> None:
        store = RecordStore([_post(1)])
        self.assertIn(1, store)
        self.assertNotIn(2, store)


if __name__ == "__main__":
    unittest.main()
