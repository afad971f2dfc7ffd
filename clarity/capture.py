from __future__ import annotations

import asyncio
import io
from concurrent.futures import Executor
from datetime import datetime
from pathlib import Path
from typing import Callable

import mss
import mss.exception
from loguru import logger
from PIL import Image

from .database import ClarityDatabase
from .errors import CaptureError, CapturePermission, EncodeFailure, NoDisplay, WriteFailure
from .events import EventNotifier
from .models import CaptureRecord
from .paths import screenshot_path
from .session import SessionConfig

CAPTURE_INTERVAL_SECONDS = 1.0
JPEG_QUALITY = 85

Grabber = Callable[[], Image.Image]


def grab_primary_display() -> Image.Image:
    try:
        sct = mss.mss()
    except mss.exception.ScreenShotError as exc:
        raise NoDisplay(f"No display available: {exc}") from exc

    with sct:
        # monitors[0] is the union of all screens, monitors[1] the primary one
        if len(sct.monitors) < 2:
            raise NoDisplay("No monitors found.")
        try:
            shot = sct.grab(sct.monitors[1])
        except mss.exception.ScreenShotError as exc:
            raise CapturePermission(
                f"Failed to capture screen: {exc}. Make sure screen recording permission is granted."
            ) from exc
    return Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")


class ScreenCapturer:
    def __init__(self, db: ClarityDatabase, grabber: Grabber | None = None):
        self._db = db
        self._grab = grabber or grab_primary_display

    def capture_once(self, storage_path: Path, index: int = 0) -> CaptureRecord:
        """Grab the primary display, store it as JPEG and record it.

        Blocking; callers on the event loop go through :meth:`capture`.
        """
        image = self._grab()
        width, height = image.size
        payload = _encode_jpeg(image)

        captured_at = datetime.now().astimezone()
        try:
            target = screenshot_path(storage_path, captured_at, index)
            target.write_bytes(payload)
            file_size = target.stat().st_size
        except OSError as exc:
            raise WriteFailure(f"Failed to write screenshot: {exc}") from exc

        try:
            row_id = self._db.insert_capture(
                timestamp=captured_at,
                file_path=target,
                width=width,
                height=height,
                file_size=file_size,
            )
        except Exception as exc:  # noqa: BLE001
            raise WriteFailure(f"Failed to record screenshot {target}: {exc}") from exc

        return CaptureRecord(
            id=row_id,
            timestamp=captured_at,
            file_path=str(target),
            width=width,
            height=height,
            file_size=file_size,
        )

    async def capture(self, storage_path: Path, index: int, executor: Executor | None = None) -> CaptureRecord:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, self.capture_once, storage_path, index)


def _encode_jpeg(image: Image.Image) -> bytes:
    try:
        if image.mode != "RGB":
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    except (OSError, ValueError) as exc:
        raise EncodeFailure(f"Failed to encode image: {exc}") from exc
    return buffer.getvalue()


class CaptureLoop:
    """Drives the capturer at a fixed cadence while the session is active.

    The cadence is fixed and does not follow the summary interval.
    """

    def __init__(
        self,
        config: SessionConfig,
        capturer: ScreenCapturer,
        notifier: EventNotifier,
        executor: Executor | None = None,
        cadence_seconds: float = CAPTURE_INTERVAL_SECONDS,
    ):
        self._config = config
        self._capturer = capturer
        self._notifier = notifier
        self._executor = executor
        self._cadence = cadence_seconds

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        storage_path = self._config.storage_path.get()
        try:
            await loop.run_in_executor(self._executor, _ensure_directory, storage_path)
        except OSError as exc:
            logger.error("Failed to create storage directory {}: {}", storage_path, exc)
            return

        logger.info("Capture loop started ({}s cadence)", self._cadence)
        index = 0
        next_due = loop.time()
        while True:
            delay = next_due - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            if not self._config.is_active.get():
                break

            try:
                record = await self._capturer.capture(storage_path, index, self._executor)
            except CaptureError as exc:
                logger.error("Screenshot error: {}", exc)
            except Exception:  # noqa: BLE001
                logger.exception("Unexpected screenshot error")
            else:
                index += 1
                self._config.increment_captures()
                logger.debug("Captured #{} -> {}", record.id, record.file_path)
                self._notifier.emit()

            next_due = max(next_due + self._cadence, loop.time() + 0.05 * self._cadence)

        logger.info("Capture loop stopped")


def _ensure_directory(path: Path) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)
