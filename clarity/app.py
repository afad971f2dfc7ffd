from __future__ import annotations

import argparse
import asyncio
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from pathlib import Path

import requests
from loguru import logger

from . import __version__
from .capture import ScreenCapturer
from .controller import SessionController
from .database import ClarityDatabase
from .errors import ClarityError
from .events import EventNotifier
from .gemini import GeminiClient
from .paths import database_path, ensure_directories, recordings_directory
from .reports import ReportService
from .session import WORKER_POOL_SIZE, SessionContext
from .settings import SettingsProvider
from .summary import CycleOutcome, SummaryLoop
from .video import VideoAssembler

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {name}:{line} - {message}"

CONFIG_KEYS = ("api-key", "model", "interval", "resolution", "language", "prompt")


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


def build_context(db_file: Path | None = None, storage_path: Path | None = None) -> SessionContext:
    """Open storage and load settings. Raises StorageUnavailable if the database cannot be opened."""
    if storage_path is None:
        ensure_directories()
        storage_path = recordings_directory()
    db = ClarityDatabase(db_file or database_path())
    settings = SettingsProvider(db)
    config = settings.load_session_config(storage_path)
    executor = ThreadPoolExecutor(max_workers=WORKER_POOL_SIZE, thread_name_prefix="clarity-worker")
    http_session = requests.Session()
    return SessionContext(
        config=config,
        database=db,
        settings=settings,
        notifier=EventNotifier(),
        capturer=ScreenCapturer(db),
        assembler=VideoAssembler(),
        client_factory=lambda api_key: GeminiClient(api_key, session=http_session, executor=executor),
        executor=executor,
        http_session=http_session,
    )


async def _run_session(ctx: SessionContext) -> None:
    controller = SessionController(ctx)
    status = await controller.start()
    print(f"recording=1 storage={status.storage_path}")
    try:
        await asyncio.Event().wait()
    finally:
        if controller.status().is_active:
            final = await controller.stop()
            print(f"recording=0 captures={final.capture_count}")


async def _summarize_now(ctx: SessionContext) -> int:
    loop = SummaryLoop(ctx)
    result = await loop.run_cycle(ctx.config.summary_interval_seconds.get())
    if result.outcome is CycleOutcome.SUMMARIZED and result.summary is not None:
        print(result.summary.content)
        return 0
    if result.error is not None:
        print(f"summary failed: {result.error}", file=sys.stderr)
    else:
        print(f"summary skipped: {result.outcome.value}", file=sys.stderr)
    return 1


def _capture_once(ctx: SessionContext) -> int:
    record = ctx.capturer.capture_once(ctx.config.storage_path.get())
    print(
        f"captured={record.id} size={record.width}x{record.height} "
        f"bytes={record.file_size} file={record.file_path}"
    )
    return 0


def _config_get(settings: SettingsProvider, key: str) -> str:
    if key == "api-key":
        return "(set)" if settings.get_api_key() else "(not set)"
    if key == "model":
        return settings.get_model()
    if key == "interval":
        return str(settings.get_summary_interval())
    if key == "resolution":
        return settings.get_resolution_mode().value
    if key == "language":
        return settings.get_language().value
    return settings.get_prompt()


def _config_set(settings: SettingsProvider, key: str, value: str) -> None:
    if key == "api-key":
        settings.set_api_key(value)
    elif key == "model":
        settings.set_model(value)
    elif key == "interval":
        try:
            seconds = int(value)
        except ValueError:
            raise ValueError("Summary interval must be a whole number of seconds.") from None
        settings.set_summary_interval(seconds)
    elif key == "resolution":
        settings.set_resolution_mode(value)
    elif key == "language":
        settings.set_language(value)
    else:
        settings.set_prompt(value)


async def _api_report(ctx: SessionContext, limit: int) -> list[str]:
    reports = ReportService(ctx)
    lines: list[str] = []
    for label, stats in (
        ("all", await reports.api_statistics()),
        ("today", await reports.api_statistics(date.today())),
    ):
        avg = f"{stats.avg_duration_ms:.0f}ms" if stats.avg_duration_ms is not None else "-"
        lines.append(
            f"{label} requests={stats.total_requests} ok={stats.successful_requests} "
            f"failed={stats.failed_requests} tokens={stats.total_tokens} "
            f"(prompt={stats.total_prompt_tokens} completion={stats.total_completion_tokens}) avg={avg}"
        )
    for record in await reports.recent_api_requests(limit):
        outcome = "ok" if record.success else f"failed: {record.error_message}"
        lines.append(
            f"{record.timestamp.isoformat(timespec='seconds')} {record.model} status={record.status_code} "
            f"{record.duration_ms}ms tokens={record.total_tokens if record.total_tokens is not None else '-'} {outcome}"
        )
    return lines


def _parse_day(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date format: {value}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clarity")
    parser.add_argument("--version", action="store_true", help="Print app version and exit")
    parser.add_argument("--log-level", default="INFO", help="Log level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--db", type=Path, default=None, help="Database file (defaults to the app data dir)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Record and summarize until interrupted")
    sub.add_parser("capture-once", help="Capture one screenshot and exit")
    sub.add_parser("status", help="Show session configuration")
    sub.add_parser("summarize-now", help="Summarize the trailing window once")

    daily = sub.add_parser("daily-summary", help="Generate the aggregate report for a day")
    daily.add_argument("--date", type=_parse_day, default=None, help="YYYY-MM-DD, defaults to today")

    stats = sub.add_parser("stats", help="Per-day capture and summary counts")
    stats.add_argument("--days", type=int, default=7)
    stats.add_argument("--api", action="store_true", help="Show Gemini request totals and recent requests instead")
    stats.add_argument("--requests", type=int, default=10, help="How many recent requests to list with --api")

    config = sub.add_parser("config", help="Read or change a setting")
    config.add_argument("action", choices=("get", "set", "reset"))
    config.add_argument("key", choices=CONFIG_KEYS)
    config.add_argument("value", nargs="?")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.version:
        print(__version__)
        return 0

    configure_logging(args.log_level)
    command = args.command or "run"
    try:
        ctx = build_context(db_file=args.db)
    except ClarityError as exc:
        logger.error("Failed to initialize: {}", exc)
        return 1

    try:
        if command == "run":
            try:
                asyncio.run(_run_session(ctx))
            except KeyboardInterrupt:
                pass
            return 0
        if command == "capture-once":
            return _capture_once(ctx)
        if command == "status":
            status = ctx.config.status()
            print(
                f"recording={int(status.is_active)} storage={status.storage_path} "
                f"interval={ctx.config.summary_interval_seconds.get()}s model={ctx.config.model.get()} "
                f"resolution={ctx.config.resolution_mode.get().value} language={ctx.config.language.get().value}"
            )
            return 0
        if command == "summarize-now":
            return asyncio.run(_summarize_now(ctx))
        if command == "daily-summary":
            summary = asyncio.run(ReportService(ctx).generate_daily_summary(args.date))
            print(f"{summary.day} screenshots={summary.screenshot_count} summaries={summary.summary_count}")
            print(summary.content)
            return 0
        if command == "stats":
            if args.api:
                for line in asyncio.run(_api_report(ctx, args.requests)):
                    print(line)
                return 0
            for row in asyncio.run(ReportService(ctx).historical_stats(args.days)):
                print(
                    f"{row.day} screenshots={row.screenshot_count} summaries={row.summary_count} "
                    f"covered={row.total_duration_seconds}s"
                )
            return 0
        if command == "config":
            if args.action == "get":
                print(_config_get(ctx.settings, args.key))
                return 0
            if args.action == "reset":
                if args.key != "prompt":
                    parser.error("only the prompt can be reset")
                print(ctx.settings.reset_prompt())
                return 0
            if args.value is None:
                parser.error("config set requires a value")
            _config_set(ctx.settings, args.key, args.value)
            return 0
    except (ClarityError, ValueError) as exc:
        logger.error("{}", exc)
        return 1
    finally:
        ctx.shutdown()

    parser.error(f"Unknown command: {command}")
    return 2

