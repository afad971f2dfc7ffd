from __future__ import annotations

import asyncio

from loguru import logger

from .capture import CAPTURE_INTERVAL_SECONDS, CaptureLoop
from .errors import AlreadyActive, NotActive
from .models import SessionStatus
from .session import SessionConfig, SessionContext
from .summary import SummaryLoop


class SessionController:
    """Starts and stops a recording session.

    ``stop()`` cancels the capture task outright; losing a half-taken
    screenshot costs nothing. The summary task is left alone and leaves on its
    next tick, so an in-flight summarization is never cut short.
    """

    def __init__(self, ctx: SessionContext, capture_cadence_seconds: float = CAPTURE_INTERVAL_SECONDS):
        self._ctx = ctx
        self._config = ctx.config
        self._lock = asyncio.Lock()
        self._capture_cadence = capture_cadence_seconds
        self._capture_task: asyncio.Task | None = None
        self._summary_task: asyncio.Task | None = None
        self._watcher_task: asyncio.Task | None = None

    @property
    def capture_task(self) -> asyncio.Task | None:
        return self._capture_task

    @property
    def summary_task(self) -> asyncio.Task | None:
        return self._summary_task

    async def start(self) -> SessionStatus:
        async with self._lock:
            if self._config.is_active.get():
                logger.warning("Recording is already in progress")
                raise AlreadyActive("Recording is already in progress.")

            generation = self._config.generation.update(lambda value: value + 1)
            self._config.capture_count.set(0)
            self._config.is_active.set(True)
            logger.info("Recording started")

            capture_loop = CaptureLoop(
                self._config,
                self._ctx.capturer,
                self._ctx.notifier,
                executor=self._ctx.executor,
                cadence_seconds=self._capture_cadence,
            )
            summary_loop = SummaryLoop(self._ctx, generation=generation)

            self._capture_task = asyncio.create_task(capture_loop.run(), name="clarity-capture")
            self._summary_task = asyncio.create_task(summary_loop.run(), name="clarity-summary")
            self._watcher_task = asyncio.create_task(
                _watch_summary_loop(self._summary_task, self._config, generation), name="clarity-summary-watch"
            )

            return SessionStatus(
                is_active=True,
                capture_count=0,
                storage_path=str(self._config.storage_path.get()),
            )

    async def stop(self) -> SessionStatus:
        async with self._lock:
            if not self._config.is_active.get():
                raise NotActive("Recording is not in progress.")

            self._config.is_active.set(False)
            task = self._capture_task
            self._capture_task = None
            if task is not None:
                task.cancel()
            logger.info("Recording stopped")
            return self._config.status()

    def status(self) -> SessionStatus:
        return self._config.status()


async def _watch_summary_loop(task: asyncio.Task, config: SessionConfig, generation: int) -> None:
    """Log a summary loop that ends while its session is still running. No restart."""
    await asyncio.wait([task])
    if task.cancelled():
        logger.warning("Summary loop for session {} was cancelled", generation)
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error("Summary loop for session {} exited with an error", generation)
        return
    if config.is_active.get() and config.generation.get() == generation:
        logger.warning("Summary loop for session {} exited unexpectedly", generation)
