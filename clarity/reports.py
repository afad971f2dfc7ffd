from __future__ import annotations

import asyncio
from datetime import date, timedelta
from typing import Any, Callable

from loguru import logger

from .database import day_bounds
from .models import ApiStatistics, ApiTelemetryRecord, DailySummary, HistoricalStats, Language, SummaryRecord
from .session import SessionContext

NO_ACTIVITY = {
    Language.EN: "No activity recorded for this day.",
    Language.ZH: "今天没有记录任何活动。",
}


def build_daily_prompt(language: Language, combined: str) -> str:
    if language is Language.EN:
        return (
            "Based on the following activity summaries from today, provide a comprehensive daily summary. "
            "Include: 1) Overall productivity assessment; 2) Main activities and time distribution; "
            "3) Key insights and recommendations for improvement.\n\n"
            f"Today's summaries:\n{combined}"
        )
    return (
        "基于以下今天的所有活动摘要，生成一份综合的每日总结。包括：1) 整体效率评估；"
        "2) 主要活动和时间分布；3) 关键洞察和改进建议。\n\n"
        f"今天的摘要：\n{combined}"
    )


def combine_summaries(summaries: list[SummaryRecord]) -> str:
    return "\n\n".join(summary.content for summary in summaries)


def covered_seconds(summaries: list[SummaryRecord]) -> int:
    return sum(int((summary.end_time - summary.start_time).total_seconds()) for summary in summaries)


class ReportService:
    """Aggregate views over stored summaries: daily reports and per-day stats."""

    def __init__(self, ctx: SessionContext):
        self._ctx = ctx

    async def _offload(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._ctx.executor, fn, *args)

    async def generate_daily_summary(self, day: date | None = None) -> DailySummary:
        day = day or date.today()
        db = self._ctx.database
        config = self._ctx.config
        start, end = day_bounds(day)

        summaries = await self._offload(db.list_summaries, start, end)
        screenshot_count = await self._offload(db.count_captures_for_day, day)
        language = config.language.get()

        if not summaries:
            content = NO_ACTIVITY[language]
        else:
            combined = combine_summaries(summaries)
            content = combined
            api_key = config.api_key.get()
            if api_key:
                client = self._ctx.client_factory(api_key)
                try:
                    result = await client.generate_text(config.model.get(), build_daily_prompt(language, combined))
                    content = result.content
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Failed to generate daily summary with AI: {}. Using combined summaries.", exc)
            else:
                logger.info("No API key configured, daily summary uses combined summaries")

        await self._offload(
            db.upsert_daily_summary,
            day.isoformat(),
            content,
            screenshot_count,
            len(summaries),
            covered_seconds(summaries),
        )
        stored = await self._offload(db.get_daily_summary, day.isoformat())
        if stored is None:
            raise RuntimeError("Failed to retrieve saved daily summary.")
        self._ctx.notifier.emit()
        return stored

    async def get_daily_summary(self, day: date | None = None) -> DailySummary | None:
        day = day or date.today()
        return await self._offload(self._ctx.database.get_daily_summary, day.isoformat())

    async def historical_stats(self, days: int, today: date | None = None) -> list[HistoricalStats]:
        if days <= 0:
            raise ValueError("days must be positive.")
        return await self._offload(self._historical_stats_sync, days, today or date.today())

    def _historical_stats_sync(self, days: int, today: date) -> list[HistoricalStats]:
        db = self._ctx.database
        first = today - timedelta(days=days - 1)
        stored = {row.day: row for row in db.list_daily_summaries(first.isoformat(), today.isoformat())}

        stats: list[HistoricalStats] = []
        current = first
        while current <= today:
            key = current.isoformat()
            row = stored.get(key)
            if row is not None:
                stats.append(
                    HistoricalStats(
                        day=key,
                        screenshot_count=row.screenshot_count,
                        summary_count=row.summary_count,
                        total_duration_seconds=row.total_duration_seconds,
                    )
                )
            else:
                start, end = day_bounds(current)
                summaries = db.list_summaries(start, end)
                stats.append(
                    HistoricalStats(
                        day=key,
                        screenshot_count=db.count_captures_for_day(current),
                        summary_count=len(summaries),
                        total_duration_seconds=covered_seconds(summaries),
                    )
                )
            current += timedelta(days=1)
        return stats

    async def api_statistics(self, day: date | None = None) -> ApiStatistics:
        """Telemetry totals for one local day, or for all time when ``day`` is None."""
        if day is None:
            return await self._offload(self._ctx.database.api_statistics)
        start, end = day_bounds(day)
        return await self._offload(self._ctx.database.api_statistics, start, end)

    async def recent_api_requests(self, limit: int = 10) -> list[ApiTelemetryRecord]:
        if limit <= 0:
            raise ValueError("limit must be positive.")
        return await self._offload(self._ctx.database.list_api_requests, limit)
