from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Sequence

from loguru import logger

from .errors import AssemblyError
from .models import ApiTelemetryRecord, CaptureRecord, SummaryRecord
from .paths import video_path
from .session import SessionContext
from .video import DEFAULT_FPS


class CycleOutcome(Enum):
    INACTIVE = "inactive"
    INTERVAL_CHANGED = "interval_changed"
    NO_CREDENTIAL = "no_credential"
    NO_CAPTURES = "no_captures"
    STORAGE_FAILED = "storage_failed"
    ASSEMBLY_FAILED = "assembly_failed"
    REMOTE_FAILED = "remote_failed"
    SUMMARIZED = "summarized"


@dataclass(frozen=True)
class CycleResult:
    outcome: CycleOutcome
    summary: SummaryRecord | None = None
    error: Exception | None = None


def order_captures(records: Sequence[CaptureRecord]) -> list[CaptureRecord]:
    """Ascending by timestamp whatever order storage returned them in."""
    return sorted(records, key=lambda record: (record.timestamp, record.id))


class SummaryLoop:
    """Every ``summary_interval_seconds``, turns the trailing window of captures
    into a video, has it summarized remotely and stores the result.

    Unlike the capture loop this one is never cancelled from outside: it exits
    on the first tick that finds the session inactive, so a cycle that already
    started always runs to completion.
    """

    def __init__(
        self,
        ctx: SessionContext,
        generation: int | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self._ctx = ctx
        self._config = ctx.config
        self._generation = self._config.generation.get() if generation is None else generation
        self._now = now or (lambda: datetime.now().astimezone())
        self._current_interval = self._config.summary_interval_seconds.get()

    @property
    def current_interval(self) -> int:
        return self._current_interval

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        logger.info("Summary loop started, interval {}s", self._current_interval)
        # the first tick waits a full interval
        next_due = loop.time() + self._current_interval
        while True:
            await asyncio.sleep(max(0.0, next_due - loop.time()))
            try:
                outcome = await self.tick()
            except Exception:  # noqa: BLE001
                logger.exception("Summary cycle crashed")
                outcome = None

            if outcome is CycleOutcome.INACTIVE:
                break
            if outcome is CycleOutcome.INTERVAL_CHANGED:
                next_due = loop.time() + self._current_interval
            else:
                next_due = max(next_due + self._current_interval, loop.time())
        logger.info("Summary loop stopped")

    def _session_active(self) -> bool:
        return self._config.is_active.get() and self._config.generation.get() == self._generation

    async def tick(self) -> CycleOutcome:
        if not self._session_active():
            logger.debug("Recording is not active, skipping video summary")
            return CycleOutcome.INACTIVE

        new_interval = self._config.summary_interval_seconds.get()
        if new_interval != self._current_interval:
            logger.info("Summary interval changed from {}s to {}s", self._current_interval, new_interval)
            self._current_interval = new_interval
            return CycleOutcome.INTERVAL_CHANGED

        result = await self.run_cycle(self._current_interval)
        return result.outcome

    async def run_cycle(self, window_seconds: int) -> CycleResult:
        api_key = self._config.api_key.get()
        if not api_key:
            logger.warning("Gemini API key not set, skipping video summary")
            return CycleResult(CycleOutcome.NO_CREDENTIAL)

        ctx = self._ctx
        now = self._now()
        since = now - timedelta(seconds=window_seconds)
        try:
            records = await self._offload(ctx.database.query_captures, since)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to query screenshots: {}", exc)
            return CycleResult(CycleOutcome.STORAGE_FAILED, error=exc)

        if not records:
            logger.warning("No screenshots in the last {} seconds", window_seconds)
            return CycleResult(CycleOutcome.NO_CAPTURES)

        ordered = order_captures(records)
        logger.info("Summarizing {} screenshots from the last {}s", len(ordered), window_seconds)

        output = video_path(self._config.storage_path.get(), now)
        try:
            await ctx.assembler.assemble([record.file_path for record in ordered], output, DEFAULT_FPS)
        except AssemblyError as exc:
            logger.error("Failed to create video from images: {}", exc)
            return CycleResult(CycleOutcome.ASSEMBLY_FAILED, error=exc)

        model = self._config.model.get()
        resolution = self._config.resolution_mode.get()
        language = self._config.language.get()
        prompt = await self._offload(ctx.settings.get_prompt, language)

        client = ctx.client_factory(api_key)
        started = time.monotonic()
        try:
            result = await client.summarize_video(output, model, prompt, resolution)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to summarize video: {}", exc)
            await self._record_telemetry(
                ApiTelemetryRecord(
                    timestamp=self._now(),
                    model=model,
                    endpoint=client.generate_endpoint,
                    status_code=int(getattr(exc, "status_code", None) or 0),
                    success=False,
                    duration_ms=int((time.monotonic() - started) * 1000),
                    error_message=str(exc),
                )
            )
            return CycleResult(CycleOutcome.REMOTE_FAILED, error=exc)

        logger.info(
            "Token usage: prompt={}, completion={}, total={}",
            result.prompt_tokens,
            result.completion_tokens,
            result.total_tokens,
        )
        await self._record_telemetry(
            ApiTelemetryRecord(
                timestamp=self._now(),
                model=model,
                endpoint=client.generate_endpoint,
                status_code=result.status_code,
                success=True,
                duration_ms=result.duration_ms,
                prompt_tokens=result.prompt_tokens,
                completion_tokens=result.completion_tokens,
                total_tokens=result.total_tokens,
            )
        )

        start_time = ordered[0].timestamp
        end_time = ordered[-1].timestamp
        try:
            summary_id = await self._offload(
                ctx.database.insert_summary, start_time, end_time, result.content, len(ordered)
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to save summary: {}", exc)
            return CycleResult(CycleOutcome.STORAGE_FAILED, error=exc)

        logger.info("Summary saved with id {}", summary_id)
        ctx.notifier.emit()
        return CycleResult(
            CycleOutcome.SUMMARIZED,
            summary=SummaryRecord(
                id=summary_id,
                start_time=start_time,
                end_time=end_time,
                content=result.content,
                capture_count=len(ordered),
                created_at=self._now(),
            ),
        )

    async def _record_telemetry(self, record: ApiTelemetryRecord) -> None:
        try:
            await self._offload(self._ctx.database.insert_api_request, record)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to save API request: {}", exc)
            return
        self._ctx.notifier.emit()

    async def _offload(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._ctx.executor, fn, *args)
