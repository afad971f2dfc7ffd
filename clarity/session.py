from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from .models import Language, ResolutionMode, SessionStatus

T = TypeVar("T")

DEFAULT_SUMMARY_INTERVAL_SECONDS = 45
DEFAULT_MODEL = "gemini-3-flash-preview"
DEFAULT_RESOLUTION = ResolutionMode.LOW
DEFAULT_LANGUAGE = Language.ZH
WORKER_POOL_SIZE = 4


class Guarded(Generic[T]):
    """A single value behind its own lock."""

    def __init__(self, value: T):
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value

    def update(self, fn: Callable[[T], T]) -> T:
        with self._lock:
            self._value = fn(self._value)
            return self._value


class SessionConfig:
    """Mutable session state shared by the controller and both loops.

    Each field carries its own lock.
    """

    def __init__(
        self,
        storage_path: Path,
        summary_interval_seconds: int = DEFAULT_SUMMARY_INTERVAL_SECONDS,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        resolution_mode: ResolutionMode = DEFAULT_RESOLUTION,
        language: Language = DEFAULT_LANGUAGE,
    ):
        self.is_active = Guarded(False)
        # bumped on every start so a loop from an earlier session can tell it is stale
        self.generation = Guarded(0)
        self.capture_count = Guarded(0)
        self.storage_path = Guarded(Path(storage_path))
        self.summary_interval_seconds = Guarded(int(summary_interval_seconds))
        self.api_key: Guarded[str | None] = Guarded(api_key or None)
        self.model = Guarded(model)
        self.resolution_mode = Guarded(resolution_mode)
        self.language = Guarded(language)

    def status(self) -> SessionStatus:
        return SessionStatus(
            is_active=self.is_active.get(),
            capture_count=self.capture_count.get(),
            storage_path=str(self.storage_path.get()),
        )

    def increment_captures(self) -> int:
        return self.capture_count.update(lambda count: count + 1)


@dataclass
class SessionContext:
    """Everything a running session needs, built once and handed to each loop."""

    config: SessionConfig
    database: Any
    settings: Any
    notifier: Any
    capturer: Any
    assembler: Any
    client_factory: Callable[[str], Any]
    executor: ThreadPoolExecutor = field(
        default_factory=lambda: ThreadPoolExecutor(max_workers=WORKER_POOL_SIZE, thread_name_prefix="clarity-worker")
    )
    # shared by every client the factory builds; closed on shutdown
    http_session: Any = None

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)
        if self.http_session is not None:
            self.http_session.close()
