from __future__ import annotations

import unittest
from datetime import datetime, timezone

from lostfound_sync.errors import ValidationError
from lostfound_sync.page_schema import parse_page, parse_records, record_to_wire
from lostfound_sync.records import Notification, Post, PostStatus, Report, ReportStatus


class TestParsePage(unittest.TestCase):
    def test_dashboard_envelope(self) -> None:
        raw = {
            "page": 2,
            "total": 12,
            "posts": [
                {
                    "id": 11,
                    "title": "Umbrella",
                    "building": "H1",
                    "post_floor": 3,
                    "nearest_room": "H1-301",
                    "found_at": "2025-03-01T10:00:00",
                    "post_description": "Black, folded",
                    "images": [{"url": "https://example.com/a.jpg"}, {"url": ""}],
                    "usr_id": 4,
                    "post_status": "with_security",
                }
            ],
        }

        snap = parse_page(raw, "post", requested_page=2)

        self.assertEqual(snap.page, 2)
        self.assertEqual(snap.total_count, 12)
        post = snap.items[0]
        self.assertIsInstance(post, Post)
        self.assertEqual(post.floor, "3")
        self.assertEqual(post.room, "H1-301")
        self.assertEqual(post.owner_id, 4)
        self.assertEqual(post.status, PostStatus.WITH_SECURITY)
        self.assertEqual(tuple(post.image_refs), ("https://example.com/a.jpg",))
        self.assertEqual(post.found_at, datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc))

    def test_bare_list_has_no_total(self) -> None:
        raw = [
            {"id": 1, "title": "Claimed", "noti_message": "Your item was claimed", "post_id": 7},
            {"id": 2, "title": "Returned", "is_read": True},
        ]

        snap = parse_page(raw, "notification", requested_page=3)

        self.assertEqual(snap.page, 3)
        self.assertIsNone(snap.total_count)
        self.assertIsInstance(snap.items[0], Notification)
        self.assertEqual(snap.items[0].related_post_id, 7)
        self.assertTrue(snap.items[1].is_read)

    def test_report_with_nested_user(self) -> None:
        raw = {
            "items": [
                {
                    "id": 5,
                    "title": "Spam",
                    "report_message": "Duplicate post",
                    "time_created": "2025-01-01T00:00:00Z",
                    "status": "resolved",
                    "user": {"id": 9, "alias": "kim"},
                }
            ]
        }

        report = parse_page(raw, "report", requested_page=1).items[0]

        self.assertIsInstance(report, Report)
        self.assertEqual(report.status, ReportStatus.RESOLVED)
        self.assertEqual(report.reporter_alias, "kim")

    def test_one_bad_item_rejects_the_page(self) -> None:
        raw = {"items": [{"id": 1, "title": "ok"}, {"title": "no id"}]}
        with self.assertRaises(ValidationError) as ctx:
            parse_page(raw, "post", requested_page=1)
        self.assertIn("items[1]", str(ctx.exception))

    def test_rejects_non_list_items_and_bad_total(self) -> None:
        with self.assertRaises(ValidationError):
            parse_page({"items": {"id": 1}}, "post", requested_page=1)
        with self.assertRaises(ValidationError):
            parse_page({"items": [], "total": -1}, "post", requested_page=1)
        with self.assertRaises(ValidationError):
            parse_page("nope", "post", requested_page=1)

    def test_object_without_items_list_is_invalid(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            parse_page({"detail": "maintenance"}, "post", requested_page=1)
        self.assertIn("no items list", str(ctx.exception))

        with self.assertRaises(ValidationError):
            parse_page({"page": 1, "total": 0}, "post", requested_page=1)

    def test_explicit_empty_list_is_an_empty_page(self) -> None:
        snap = parse_page({"page": 3, "total": 20, "posts": []}, "post", requested_page=3)
        self.assertEqual(snap.items, ())
        self.assertEqual(snap.total_count, 20)

    def test_unknown_status_is_invalid(self) -> None:
        with self.assertRaises(ValidationError):
            parse_records([{"id": 1, "title": "x", "post_status": "LOST_FOREVER"}], "post")


class TestRecordToWire(unittest.TestCase):
    def test_wire_shape_parses_back(self) -> None:
        post = Post(
            id=3,
            title="Bottle",
            building="H2",
            floor="1",
            found_at=datetime(2025, 2, 2, tzinfo=timezone.utc),
            image_refs=("https://example.com/b.jpg",),
            owner_id=1,
            thread_id=30,
        )

        wire = record_to_wire(post)

        self.assertEqual(wire["post_floor"], "1")
        self.assertEqual(wire["images"], [{"url": "https://example.com/b.jpg"}])
        self.assertEqual(parse_records([wire], "post")[0], post)

    def test_rejects_unknown_types(self) -> None:
        with self.assertRaises(TypeError):
            record_to_wire(object())  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
