from __future__ import annotations

import asyncio
import time
from concurrent.futures import Executor
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

import requests
from loguru import logger

from .errors import (
    EmptyResponse,
    GenerationError,
    PollTimeout,
    RemoteError,
    RemoteProcessingFailed,
    UploadError,
)
from .models import FileState, GenerationResult, RemoteFile, ResolutionMode

API_BASE = "https://generativelanguage.googleapis.com"
GENERATE_ENDPOINT = f"{API_BASE}/v1beta/models"
VIDEO_MIME_TYPE = "video/mp4"
POLL_INTERVAL_SECONDS = 1.0
POLL_TIMEOUT_SECONDS = 120.0
REQUEST_TIMEOUT_SECONDS = 240


class PollDecision(Enum):
    CONTINUE = "continue"
    SUCCEED = "succeed"
    FAIL = "fail"
    TIMEOUT = "timeout"


def decide_poll(state: FileState, elapsed_seconds: float, timeout_seconds: float) -> PollDecision:
    """What to do after one status fetch, independent of how waiting happens."""
    if state is FileState.ACTIVE:
        return PollDecision.SUCCEED
    if state is FileState.FAILED:
        return PollDecision.FAIL
    if elapsed_seconds > timeout_seconds:
        return PollDecision.TIMEOUT
    return PollDecision.CONTINUE


def parse_remote_file(data: Any) -> RemoteFile:
    """Accept either a bare File object or one wrapped as ``{"file": {...}}``."""
    if not isinstance(data, dict):
        raise ValueError("File response is not a JSON object.")
    payload = data.get("file") if isinstance(data.get("file"), dict) else data
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValueError("File response missing name.")
    return RemoteFile(
        name=name,
        uri=str(payload.get("uri") or ""),
        mime_type=str(payload.get("mimeType") or VIDEO_MIME_TYPE),
        state=FileState.parse(payload.get("state")),
    )


def build_generate_payload(
    prompt: str,
    remote_file: RemoteFile | None = None,
    resolution: ResolutionMode = ResolutionMode.LOW,
) -> dict[str, Any]:
    parts: list[dict[str, Any]] = []
    if remote_file is not None:
        parts.append(
            {
                "fileData": {"fileUri": remote_file.uri, "mimeType": remote_file.mime_type},
                "mediaResolution": {"level": resolution.media_resolution_level},
            }
        )
    parts.append({"text": prompt})
    return {"contents": [{"parts": parts}]}


def extract_generation(data: Any, status_code: int, duration_ms: int) -> GenerationResult:
    if not isinstance(data, dict):
        raise EmptyResponse("Gemini response is not a JSON object.", status_code)
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise EmptyResponse("No response from Gemini API: missing candidates.", status_code)
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        raise EmptyResponse("No response from Gemini API: missing content parts.", status_code)
    text = parts[0].get("text")
    if not isinstance(text, str):
        raise EmptyResponse("No response from Gemini API: first part has no text.", status_code)

    usage = data.get("usageMetadata")
    usage = usage if isinstance(usage, dict) else {}
    return GenerationResult(
        content=text,
        status_code=status_code,
        duration_ms=duration_ms,
        prompt_tokens=_optional_int(usage.get("promptTokenCount")),
        completion_tokens=_optional_int(usage.get("candidatesTokenCount")),
        total_tokens=_optional_int(usage.get("totalTokenCount")),
    )


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _file_id(name: str) -> str:
    return name if name.startswith("files/") else f"files/{name}"


class GeminiClient:
    """Upload, poll and generate against the Gemini REST API.

    HTTP calls are blocking ``requests`` calls pushed onto ``executor`` so they
    never stall the event loop.
    """

    def __init__(
        self,
        api_key: str,
        session: requests.Session | None = None,
        executor: Executor | None = None,
        base_url: str = API_BASE,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        poll_timeout_seconds: float = POLL_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._api_key = api_key
        self._session = session or requests.Session()
        self._executor = executor
        self._base_url = base_url.rstrip("/")
        self._poll_interval = poll_interval_seconds
        self._poll_timeout = poll_timeout_seconds
        self._sleep = sleep
        self._clock = clock

    @property
    def session(self) -> requests.Session:
        return self._session

    @property
    def generate_endpoint(self) -> str:
        return f"{self._base_url}/v1beta/models"

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    async def upload_file(self, file_path: Path) -> RemoteFile:
        return await self._run(self._upload_file_sync, Path(file_path))

    def _upload_file_sync(self, file_path: Path) -> RemoteFile:
        try:
            data = file_path.read_bytes()
        except OSError as exc:
            raise UploadError(f"Failed to read file {file_path}: {exc}") from exc

        logger.info("Uploading file to Gemini File API: {}", file_path.name)
        try:
            response = self._session.post(
                f"{self._base_url}/upload/v1beta/files",
                params={"key": self._api_key},
                files={"file": (file_path.name, data, VIDEO_MIME_TYPE)},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise UploadError(f"Failed to upload file: {exc}") from exc

        if not response.ok:
            raise UploadError(
                f"Gemini File API error: {response.status_code} - {response.text}",
                response.status_code,
            )
        try:
            remote = parse_remote_file(response.json())
        except ValueError as exc:
            raise UploadError(f"Failed to parse upload response: {exc}", response.status_code) from exc

        logger.info("File uploaded: {} (uri={}, state={})", remote.name, remote.uri, remote.state.value)
        return remote

    async def get_file(self, name: str) -> RemoteFile:
        return await self._run(self._get_file_sync, name)

    def _get_file_sync(self, name: str) -> RemoteFile:
        file_id = _file_id(name)
        try:
            response = self._session.get(
                f"{self._base_url}/v1beta/{file_id}",
                params={"key": self._api_key},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise RemoteError(f"Failed to get file status: {exc}") from exc

        if not response.ok:
            raise RemoteError(
                f"Gemini File API error: {response.status_code} - {response.text}",
                response.status_code,
            )
        try:
            return parse_remote_file(response.json())
        except ValueError as exc:
            raise RemoteError(
                f"Failed to parse file response for {file_id}: {exc}. Response body: {response.text[:500]}",
                response.status_code,
            ) from exc

    async def wait_until_active(self, name: str) -> RemoteFile:
        started = self._clock()
        logger.info("Waiting for file to become ACTIVE: {}", name)
        while True:
            remote = await self.get_file(name)
            elapsed = self._clock() - started
            decision = decide_poll(remote.state, elapsed, self._poll_timeout)

            if decision is PollDecision.SUCCEED:
                logger.info("File is now ACTIVE: {} (took {:.1f}s)", remote.name, elapsed)
                return remote
            if decision is PollDecision.FAIL:
                raise RemoteProcessingFailed(f"File processing failed: {remote.name}")
            if decision is PollDecision.TIMEOUT:
                raise PollTimeout(f"Wait for file ACTIVE timed out after {self._poll_timeout:g}s")

            if remote.state is FileState.UNKNOWN:
                logger.warning("Unknown file state for {}, continuing to wait", remote.name)
            await self._sleep(self._poll_interval)

    async def generate_with_file(
        self,
        remote_file: RemoteFile,
        model: str,
        prompt: str,
        resolution: ResolutionMode = ResolutionMode.LOW,
    ) -> GenerationResult:
        payload = build_generate_payload(prompt, remote_file, resolution)
        logger.info("Generating content with file URI {} (resolution: {})", remote_file.uri, resolution.value)
        return await self._run(self._generate_sync, model, payload)

    async def generate_text(self, model: str, prompt: str) -> GenerationResult:
        return await self._run(self._generate_sync, model, build_generate_payload(prompt))

    def _generate_sync(self, model: str, payload: dict[str, Any]) -> GenerationResult:
        started = time.monotonic()
        try:
            response = self._session.post(
                f"{self.generate_endpoint}/{model}:generateContent",
                params={"key": self._api_key},
                json=payload,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise GenerationError(f"Failed to send request: {exc}") from exc

        duration_ms = int((time.monotonic() - started) * 1000)
        if not response.ok:
            raise GenerationError(
                f"Gemini API error: {response.status_code} - {response.text}",
                response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError(f"Failed to parse response: {exc}", response.status_code) from exc
        return extract_generation(data, response.status_code, duration_ms)

    async def summarize_video(
        self,
        video_path: Path,
        model: str,
        prompt: str,
        resolution: ResolutionMode = ResolutionMode.LOW,
    ) -> GenerationResult:
        logger.info("Starting video summary (resolution: {})", resolution.value)
        uploaded = await self.upload_file(video_path)
        active = await self.wait_until_active(uploaded.name)
        result = await self.generate_with_file(active, model, prompt, resolution)
        logger.info("Video summary completed, {} chars", len(result.content))
        return result
