from __future__ import annotations

import os
import tempfile
import time
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from clarity.database import ClarityDatabase
from clarity.errors import StorageUnavailable
from clarity.models import ApiTelemetryRecord


class DatabaseTests(unittest.TestCase):
    def test_insert_and_query_captures_newest_first(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            db = ClarityDatabase(Path(tmp_dir) / "clarity.sqlite3")
            base = datetime(2026, 1, 2, 10, 15, 0, tzinfo=timezone.utc)
            for offset in (0, 2, 1):
                db.insert_capture(
                    timestamp=base + timedelta(seconds=offset),
                    file_path=Path(tmp_dir) / f"shot-{offset}.jpg",
                    width=1920,
                    height=1080,
                    file_size=1000 + offset,
                )

            rows = db.query_captures()
            self.assertEqual(len(rows), 3)
            self.assertEqual([row.file_size for row in rows], [1002, 1001, 1000])
            self.assertEqual(rows[0].width, 1920)
            self.assertEqual(rows[0].timestamp, base + timedelta(seconds=2))

    def test_query_captures_respects_window_and_limit(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            db = ClarityDatabase(Path(tmp_dir) / "clarity.sqlite3")
            base = datetime(2026, 1, 2, 10, 0, 0, tzinfo=timezone.utc)
            for offset in range(10):
                db.insert_capture(base + timedelta(seconds=offset), Path(f"{offset}.jpg"), 1, 1, 1)

            window = db.query_captures(start=base + timedelta(seconds=3), end=base + timedelta(seconds=6))
            self.assertEqual(len(window), 4)
            self.assertEqual(len(db.query_captures(limit=2)), 2)

    def test_summary_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            db = ClarityDatabase(Path(tmp_dir) / "clarity.sqlite3")
            start = datetime(2026, 1, 3, 9, 0, 0).astimezone()
            db.insert_summary(start, start + timedelta(seconds=44), "Writing docs.", 45)

            stored = db.list_summaries()
            self.assertEqual(len(stored), 1)
            self.assertEqual(stored[0].content, "Writing docs.")
            self.assertEqual(stored[0].capture_count, 45)
            self.assertLessEqual(stored[0].start_time, stored[0].end_time)

    def test_api_statistics(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            db = ClarityDatabase(Path(tmp_dir) / "clarity.sqlite3")
            now = datetime.now().astimezone()
            db.insert_api_request(
                ApiTelemetryRecord(
                    timestamp=now,
                    model="gemini-test",
                    endpoint="https://example.test",
                    status_code=200,
                    success=True,
                    duration_ms=100,
                    prompt_tokens=10,
                    completion_tokens=5,
                    total_tokens=15,
                )
            )
            db.insert_api_request(
                ApiTelemetryRecord(
                    timestamp=now,
                    model="gemini-test",
                    endpoint="https://example.test",
                    status_code=500,
                    success=False,
                    duration_ms=300,
                    error_message="boom",
                )
            )

            stats = db.api_statistics()
            self.assertEqual(stats.total_requests, 2)
            self.assertEqual(stats.successful_requests, 1)
            self.assertEqual(stats.failed_requests, 1)
            self.assertEqual(stats.total_tokens, 15)
            self.assertEqual(stats.avg_duration_ms, 200.0)

            latest = db.list_api_requests(limit=1)[0]
            self.assertFalse(latest.success)
            self.assertEqual(latest.error_message, "boom")
            self.assertIsNone(latest.total_tokens)

    def test_daily_summary_upsert(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            db = ClarityDatabase(Path(tmp_dir) / "clarity.sqlite3")
            db.upsert_daily_summary("2026-01-04", "first", 10, 1, 45)
            db.upsert_daily_summary("2026-01-04", "second", 20, 2, 90)

            entry = db.get_daily_summary("2026-01-04")
            self.assertIsNotNone(entry)
            self.assertEqual(entry.content, "second")
            self.assertEqual(entry.summary_count, 2)
            self.assertEqual(len(db.list_daily_summaries("2026-01-01", "2026-01-31")), 1)
            self.assertIsNone(db.get_daily_summary("2026-01-05"))

    def test_count_captures_for_day(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            db = ClarityDatabase(Path(tmp_dir) / "clarity.sqlite3")
            noon = datetime(2026, 1, 6, 12, 0, 0).astimezone()
            db.insert_capture(noon, Path("a.jpg"), 1, 1, 1)
            db.insert_capture(noon + timedelta(minutes=1), Path("b.jpg"), 1, 1, 1)
            self.assertEqual(db.count_captures_for_day(date(2026, 1, 6)), 2)
            self.assertEqual(db.count_captures_for_day(date(2026, 1, 7)), 0)

    def test_settings_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            db = ClarityDatabase(Path(tmp_dir) / "clarity.sqlite3")
            db.set_setting("summary_interval_seconds", "60")
            self.assertEqual(db.get_setting("summary_interval_seconds"), "60")
            self.assertEqual(db.get_setting("missing", "fallback"), "fallback")

    def test_unusable_location_raises_storage_unavailable(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            blocker = Path(tmp_dir) / "not-a-dir"
            blocker.write_text("x")
            with self.assertRaises(StorageUnavailable):
                ClarityDatabase(blocker / "clarity.sqlite3")


@unittest.skipUnless(hasattr(time, "tzset"), "switching the local timezone needs time.tzset")
class LocalOffsetChangeTests(unittest.TestCase):
    """Berlin leaves summer time at 2026-10-25 01:00Z, so the local offset drops from +02:00 to +01:00."""

    def setUp(self) -> None:
        self._saved_tz = os.environ.get("TZ")
        os.environ["TZ"] = "Europe/Berlin"
        time.tzset()
        self._tmp = tempfile.TemporaryDirectory()
        self.db = ClarityDatabase(Path(self._tmp.name) / "clarity.sqlite3")

    def tearDown(self) -> None:
        self._tmp.cleanup()
        if self._saved_tz is None:
            os.environ.pop("TZ", None)
        else:
            os.environ["TZ"] = self._saved_tz
        time.tzset()

    def _insert_local(self, utc_moment: datetime, name: str) -> None:
        self.db.insert_capture(utc_moment.astimezone(), Path(name), 1, 1, 1)

    def test_trailing_window_ignores_captures_from_before_the_shift(self) -> None:
        self._insert_local(datetime(2026, 10, 25, 0, 50, 0, 123, tzinfo=timezone.utc), "summer.jpg")
        self._insert_local(datetime(2026, 10, 25, 1, 29, 30, tzinfo=timezone.utc), "winter.jpg")

        now = datetime(2026, 10, 25, 1, 30, 0, tzinfo=timezone.utc).astimezone()
        rows = self.db.query_captures(start=now - timedelta(seconds=45))

        self.assertEqual([row.file_path for row in rows], ["winter.jpg"])

    def test_day_count_follows_local_calendar_day(self) -> None:
        self._insert_local(datetime(2026, 10, 24, 21, 30, tzinfo=timezone.utc), "late-24th.jpg")
        self._insert_local(datetime(2026, 10, 24, 22, 30, tzinfo=timezone.utc), "early-25th.jpg")
        self._insert_local(datetime(2026, 10, 25, 22, 30, tzinfo=timezone.utc), "late-25th.jpg")

        self.assertEqual(self.db.count_captures_for_day(date(2026, 10, 24)), 1)
        self.assertEqual(self.db.count_captures_for_day(date(2026, 10, 25)), 2)

    def test_stored_timestamps_read_back_as_the_same_instant(self) -> None:
        moment = datetime(2026, 10, 25, 0, 59, 59, tzinfo=timezone.utc)
        self._insert_local(moment, "edge.jpg")
        self.assertEqual(self.db.query_captures()[0].timestamp, moment)


if __name__ == "__main__":
    unittest.main()
