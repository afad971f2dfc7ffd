from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class FileState(Enum):
    PROCESSING = "PROCESSING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: object) -> "FileState":
        value = str(raw or "").strip().upper()
        for state in cls:
            if state.value == value:
                return state
        return cls.UNKNOWN


class ResolutionMode(Enum):
    LOW = "low"
    DEFAULT = "default"

    @property
    def media_resolution_level(self) -> str:
        if self is ResolutionMode.DEFAULT:
            return "MEDIA_RESOLUTION_DEFAULT"
        return "MEDIA_RESOLUTION_LOW"


class Language(Enum):
    EN = "en"
    ZH = "zh"


@dataclass(frozen=True)
class CaptureRecord:
    id: int
    timestamp: datetime
    file_path: str
    width: int
    height: int
    file_size: int


@dataclass(frozen=True)
class SummaryRecord:
    id: int
    start_time: datetime
    end_time: datetime
    content: str
    capture_count: int
    created_at: datetime


@dataclass(frozen=True)
class ApiTelemetryRecord:
    timestamp: datetime
    model: str
    endpoint: str
    status_code: int
    success: bool
    duration_ms: int
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class RemoteFile:
    name: str
    uri: str
    mime_type: str
    state: FileState


@dataclass(frozen=True)
class GenerationResult:
    content: str
    status_code: int
    duration_ms: int
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True)
class SessionStatus:
    is_active: bool
    capture_count: int
    storage_path: str


@dataclass(frozen=True)
class DailySummary:
    id: int
    day: str
    content: str
    screenshot_count: int
    summary_count: int
    total_duration_seconds: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ApiStatistics:
    total_requests: int
    successful_requests: int
    failed_requests: int
    total_prompt_tokens: int
    total_completion_tokens: int
    total_tokens: int
    avg_duration_ms: float | None


@dataclass(frozen=True)
class HistoricalStats:
    day: str
    screenshot_count: int
    summary_count: int
    total_duration_seconds: int
