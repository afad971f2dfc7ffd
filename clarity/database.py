from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, time, timezone
from pathlib import Path

from .errors import StorageUnavailable
from .models import ApiStatistics, ApiTelemetryRecord, CaptureRecord, DailySummary, SummaryRecord


class ClarityDatabase:
    def __init__(self, db_file: Path):
        self._db_file = Path(db_file)
        self._lock = threading.Lock()
        try:
            self._db_file.parent.mkdir(parents=True, exist_ok=True)
            self._init_schema()
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailable(f"Failed to initialize database at {self._db_file}: {exc}") from exc

    @property
    def path(self) -> Path:
        return self._db_file

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_file, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _connection(self):
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS screenshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    width INTEGER NOT NULL,
                    height INTEGER NOT NULL,
                    file_size INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_screenshots_timestamp
                ON screenshots(timestamp);

                CREATE TABLE IF NOT EXISTS summaries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    content TEXT NOT NULL,
                    capture_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_summaries_start_time
                ON summaries(start_time);

                CREATE TABLE IF NOT EXISTS api_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    model TEXT NOT NULL,
                    endpoint TEXT NOT NULL,
                    prompt_tokens INTEGER,
                    completion_tokens INTEGER,
                    total_tokens INTEGER,
                    status_code INTEGER NOT NULL DEFAULT 0,
                    success INTEGER NOT NULL DEFAULT 1,
                    error_message TEXT,
                    duration_ms INTEGER NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_api_requests_timestamp
                ON api_requests(timestamp);

                CREATE TABLE IF NOT EXISTS daily_summaries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    day TEXT NOT NULL UNIQUE,
                    content TEXT NOT NULL,
                    screenshot_count INTEGER NOT NULL DEFAULT 0,
                    summary_count INTEGER NOT NULL DEFAULT 0,
                    total_duration_seconds INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            conn.commit()

    def insert_capture(
        self,
        timestamp: datetime,
        file_path: Path,
        width: int,
        height: int,
        file_size: int,
    ) -> int:
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO screenshots(timestamp, file_path, width, height, file_size)
                VALUES (?, ?, ?, ?, ?)
                """,
                (_iso(timestamp), str(file_path), int(width), int(height), int(file_size)),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def query_captures(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[CaptureRecord]:
        """Captures within [start, end], newest first."""
        sql = "SELECT id, timestamp, file_path, width, height, file_size FROM screenshots WHERE 1=1"
        params: list[object] = []
        if start is not None:
            sql += " AND timestamp >= ?"
            params.append(_iso(start))
        if end is not None:
            sql += " AND timestamp <= ?"
            params.append(_iso(end))
        sql += " ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._lock, self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_capture(row) for row in rows]

    def count_captures_for_day(self, day: date) -> int:
        start, end = day_bounds(day)
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM screenshots WHERE timestamp >= ? AND timestamp <= ?",
                (_iso(start), _iso(end)),
            ).fetchone()
        return int(row["total"]) if row is not None else 0

    def insert_summary(
        self,
        start_time: datetime,
        end_time: datetime,
        content: str,
        capture_count: int,
    ) -> int:
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO summaries(start_time, end_time, content, capture_count, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (_iso(start_time), _iso(end_time), content, int(capture_count), _now_iso()),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def list_summaries(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[SummaryRecord]:
        """Summaries whose start_time lies within [start, end], oldest first."""
        sql = "SELECT id, start_time, end_time, content, capture_count, created_at FROM summaries WHERE 1=1"
        params: list[object] = []
        if start is not None:
            sql += " AND start_time >= ?"
            params.append(_iso(start))
        if end is not None:
            sql += " AND start_time <= ?"
            params.append(_iso(end))
        sql += " ORDER BY start_time ASC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._lock, self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            SummaryRecord(
                id=int(row["id"]),
                start_time=_parse_timestamp(row["start_time"]),
                end_time=_parse_timestamp(row["end_time"]),
                content=str(row["content"]),
                capture_count=int(row["capture_count"]),
                created_at=_parse_timestamp(row["created_at"]),
            )
            for row in rows
        ]

    def insert_api_request(self, record: ApiTelemetryRecord) -> int:
        with self._lock, self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO api_requests(
                    timestamp,
                    model,
                    endpoint,
                    prompt_tokens,
                    completion_tokens,
                    total_tokens,
                    status_code,
                    success,
                    error_message,
                    duration_ms
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _iso(record.timestamp),
                    record.model,
                    record.endpoint,
                    record.prompt_tokens,
                    record.completion_tokens,
                    record.total_tokens,
                    int(record.status_code),
                    1 if record.success else 0,
                    record.error_message,
                    int(record.duration_ms),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def list_api_requests(self, limit: int = 100) -> list[ApiTelemetryRecord]:
        with self._lock, self._connection() as conn:
            rows = conn.execute(
                """
                SELECT timestamp, model, endpoint, prompt_tokens, completion_tokens, total_tokens,
                       status_code, success, error_message, duration_ms
                FROM api_requests
                ORDER BY id DESC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        return [
            ApiTelemetryRecord(
                timestamp=_parse_timestamp(row["timestamp"]),
                model=str(row["model"]),
                endpoint=str(row["endpoint"]),
                prompt_tokens=row["prompt_tokens"],
                completion_tokens=row["completion_tokens"],
                total_tokens=row["total_tokens"],
                status_code=int(row["status_code"]),
                success=bool(row["success"]),
                error_message=row["error_message"],
                duration_ms=int(row["duration_ms"]),
            )
            for row in rows
        ]

    def api_statistics(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ApiStatistics:
        sql = """
            SELECT
                COUNT(*) AS total_requests,
                COALESCE(SUM(CASE WHEN success = 1 THEN 1 ELSE 0 END), 0) AS successful_requests,
                COALESCE(SUM(CASE WHEN success = 0 THEN 1 ELSE 0 END), 0) AS failed_requests,
                COALESCE(SUM(prompt_tokens), 0) AS total_prompt_tokens,
                COALESCE(SUM(completion_tokens), 0) AS total_completion_tokens,
                COALESCE(SUM(total_tokens), 0) AS total_tokens,
                AVG(duration_ms) AS avg_duration_ms
            FROM api_requests
            WHERE 1=1
        """
        params: list[object] = []
        if start is not None:
            sql += " AND timestamp >= ?"
            params.append(_iso(start))
        if end is not None:
            sql += " AND timestamp <= ?"
            params.append(_iso(end))

        with self._lock, self._connection() as conn:
            row = conn.execute(sql, params).fetchone()
        avg = row["avg_duration_ms"]
        return ApiStatistics(
            total_requests=int(row["total_requests"]),
            successful_requests=int(row["successful_requests"]),
            failed_requests=int(row["failed_requests"]),
            total_prompt_tokens=int(row["total_prompt_tokens"]),
            total_completion_tokens=int(row["total_completion_tokens"]),
            total_tokens=int(row["total_tokens"]),
            avg_duration_ms=float(avg) if avg is not None else None,
        )

    def upsert_daily_summary(
        self,
        day: str,
        content: str,
        screenshot_count: int,
        summary_count: int,
        total_duration_seconds: int,
    ) -> None:
        now = _now_iso()
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                INSERT INTO daily_summaries(
                    day, content, screenshot_count, summary_count, total_duration_seconds,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(day) DO UPDATE SET
                    content = excluded.content,
                    screenshot_count = excluded.screenshot_count,
                    summary_count = excluded.summary_count,
                    total_duration_seconds = excluded.total_duration_seconds,
                    updated_at = excluded.updated_at
                """,
                (day, content, int(screenshot_count), int(summary_count), int(total_duration_seconds), now, now),
            )
            conn.commit()

    def get_daily_summary(self, day: str) -> DailySummary | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                """
                SELECT id, day, content, screenshot_count, summary_count, total_duration_seconds,
                       created_at, updated_at
                FROM daily_summaries
                WHERE day = ?
                """,
                (day,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_daily(row)

    def list_daily_summaries(self, start_day: str | None = None, end_day: str | None = None) -> list[DailySummary]:
        sql = """
            SELECT id, day, content, screenshot_count, summary_count, total_duration_seconds,
                   created_at, updated_at
            FROM daily_summaries
            WHERE 1=1
        """
        params: list[object] = []
        if start_day:
            sql += " AND day >= ?"
            params.append(start_day)
        if end_day:
            sql += " AND day <= ?"
            params.append(end_day)
        sql += " ORDER BY day ASC"
        with self._lock, self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_daily(row) for row in rows]

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM app_settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def set_setting(self, key: str, value: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                INSERT INTO app_settings(key, value)
                VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()

    @staticmethod
    def _row_to_capture(row: sqlite3.Row) -> CaptureRecord:
        return CaptureRecord(
            id=int(row["id"]),
            timestamp=_parse_timestamp(row["timestamp"]),
            file_path=str(row["file_path"]),
            width=int(row["width"]),
            height=int(row["height"]),
            file_size=int(row["file_size"]),
        )

    @staticmethod
    def _row_to_daily(row: sqlite3.Row) -> DailySummary:
        return DailySummary(
            id=int(row["id"]),
            day=str(row["day"]),
            content=str(row["content"]),
            screenshot_count=int(row["screenshot_count"]),
            summary_count=int(row["summary_count"]),
            total_duration_seconds=int(row["total_duration_seconds"]),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """First and last instant of a local calendar day."""
    start = datetime.combine(day, time(0, 0, 0)).astimezone()
    end = datetime.combine(day, time(23, 59, 59, 999999)).astimezone()
    return start, end


def _iso(value: datetime) -> str:
    # UTC with fixed-width microseconds, so text order is time order
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now())


def _parse_timestamp(raw: object) -> datetime:
    try:
        parsed = datetime.fromisoformat(str(raw))
    except ValueError:
        return datetime.now().astimezone()
    return parsed.astimezone()
