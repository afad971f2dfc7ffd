from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fakes import FakeResponse, FakeSession

from clarity.errors import EmptyResponse, GenerationError, PollTimeout, RemoteProcessingFailed, UploadError
from clarity.gemini import (
    GeminiClient,
    PollDecision,
    build_generate_payload,
    decide_poll,
    extract_generation,
    parse_remote_file,
)
from clarity.models import FileState, RemoteFile, ResolutionMode


def _file(state: str, name: str = "files/abc123") -> dict:
    return {"name": name, "uri": f"https://example.test/{name}", "mimeType": "video/mp4", "state": state}


def _generation(text: str = "Reading email.") -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {"promptTokenCount": 300, "candidatesTokenCount": 12, "totalTokenCount": 312},
    }


class PollDecisionTests(unittest.TestCase):
    def test_active_succeeds_regardless_of_elapsed(self) -> None:
        self.assertIs(decide_poll(FileState.ACTIVE, 500.0, 120.0), PollDecision.SUCCEED)

    def test_failed_fails(self) -> None:
        self.assertIs(decide_poll(FileState.FAILED, 0.0, 120.0), PollDecision.FAIL)

    def test_processing_continues_until_timeout(self) -> None:
        self.assertIs(decide_poll(FileState.PROCESSING, 119.0, 120.0), PollDecision.CONTINUE)
        self.assertIs(decide_poll(FileState.PROCESSING, 121.0, 120.0), PollDecision.TIMEOUT)

    def test_unknown_state_keeps_waiting(self) -> None:
        self.assertIs(decide_poll(FileState.parse("SOMETHING_NEW"), 3.0, 120.0), PollDecision.CONTINUE)


class PayloadTests(unittest.TestCase):
    def test_parse_remote_file_accepts_bare_and_wrapped(self) -> None:
        bare = parse_remote_file(_file("PROCESSING"))
        wrapped = parse_remote_file({"file": _file("ACTIVE")})
        self.assertEqual(bare.name, "files/abc123")
        self.assertIs(bare.state, FileState.PROCESSING)
        self.assertIs(wrapped.state, FileState.ACTIVE)

    def test_parse_remote_file_requires_name(self) -> None:
        with self.assertRaises(ValueError):
            parse_remote_file({"file": {"uri": "x"}})
        with self.assertRaises(ValueError):
            parse_remote_file(["not", "an", "object"])

    def test_video_payload_carries_file_and_resolution(self) -> None:
        remote = RemoteFile(name="files/a", uri="https://example.test/files/a", mime_type="video/mp4", state=FileState.ACTIVE)
        payload = build_generate_payload("describe", remote, ResolutionMode.DEFAULT)
        parts = payload["contents"][0]["parts"]
        self.assertEqual(parts[0]["fileData"], {"fileUri": remote.uri, "mimeType": "video/mp4"})
        self.assertEqual(parts[0]["mediaResolution"], {"level": "MEDIA_RESOLUTION_DEFAULT"})
        self.assertEqual(parts[1], {"text": "describe"})

    def test_text_payload_has_no_file_part(self) -> None:
        payload = build_generate_payload("just text")
        self.assertEqual(payload, {"contents": [{"parts": [{"text": "just text"}]}]})

    def test_extract_generation_reads_usage(self) -> None:
        result = extract_generation(_generation(), 200, 850)
        self.assertEqual(result.content, "Reading email.")
        self.assertEqual(result.prompt_tokens, 300)
        self.assertEqual(result.completion_tokens, 12)
        self.assertEqual(result.total_tokens, 312)
        self.assertEqual(result.duration_ms, 850)

    def test_extract_generation_without_usage(self) -> None:
        result = extract_generation({"candidates": [{"content": {"parts": [{"text": "ok"}]}}]}, 200, 1)
        self.assertIsNone(result.total_tokens)

    def test_extract_generation_rejects_missing_text(self) -> None:
        with self.assertRaises(EmptyResponse):
            extract_generation({"candidates": []}, 200, 1)
        with self.assertRaises(EmptyResponse):
            extract_generation({"candidates": [{"content": {"parts": [{"inlineData": {}}]}}]}, 200, 1)


class GeminiClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.video = Path(self._tmp.name) / "summary.mp4"
        self.video.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        self.sleeps: list[float] = []

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def _client(self, session: FakeSession, clock_values: list[float] | None = None) -> GeminiClient:
        ticks = iter(clock_values or [0.0] * 100)
        return GeminiClient(
            "secret",
            session=session,
            base_url="https://example.test",
            sleep=self._sleep,
            clock=lambda: next(ticks),
        )

    async def test_summarize_video_uploads_polls_and_generates(self) -> None:
        session = FakeSession(
            posts=[FakeResponse(200, {"file": _file("PROCESSING")}), FakeResponse(200, _generation())],
            gets=[FakeResponse(200, _file("PROCESSING")), FakeResponse(200, _file("ACTIVE"))],
        )
        client = self._client(session)

        result = await client.summarize_video(self.video, "gemini-test", "what happened?", ResolutionMode.LOW)

        self.assertEqual(result.content, "Reading email.")
        self.assertEqual(result.total_tokens, 312)
        self.assertEqual(self.sleeps, [1.0])

        methods = [(method, url) for method, url, _ in session.calls]
        self.assertEqual(
            methods,
            [
                ("POST", "https://example.test/upload/v1beta/files"),
                ("GET", "https://example.test/v1beta/files/abc123"),
                ("GET", "https://example.test/v1beta/files/abc123"),
                ("POST", "https://example.test/v1beta/models/gemini-test:generateContent"),
            ],
        )
        upload_kwargs = session.calls[0][2]
        self.assertEqual(upload_kwargs["params"], {"key": "secret"})
        self.assertEqual(upload_kwargs["files"]["file"][2], "video/mp4")
        parts = session.calls[3][2]["json"]["contents"][0]["parts"]
        self.assertEqual(parts[0]["mediaResolution"]["level"], "MEDIA_RESOLUTION_LOW")

    async def test_upload_error_carries_status(self) -> None:
        session = FakeSession(posts=[FakeResponse(403, {"error": "denied"})])
        with self.assertRaises(UploadError) as ctx:
            await self._client(session).upload_file(self.video)
        self.assertEqual(ctx.exception.status_code, 403)

    async def test_missing_upload_file_is_upload_error(self) -> None:
        with self.assertRaises(UploadError):
            await self._client(FakeSession()).upload_file(Path(self._tmp.name) / "missing.mp4")

    async def test_failed_processing_stops_polling(self) -> None:
        session = FakeSession(gets=[FakeResponse(200, _file("FAILED"))])
        with self.assertRaises(RemoteProcessingFailed):
            await self._client(session).wait_until_active("files/abc123")
        self.assertEqual(self.sleeps, [])

    async def test_polling_times_out(self) -> None:
        session = FakeSession(gets=[FakeResponse(200, _file("PROCESSING")), FakeResponse(200, _file("PROCESSING"))])
        with self.assertRaises(PollTimeout):
            await self._client(session, clock_values=[0.0, 50.0, 130.0]).wait_until_active("abc123")
        self.assertEqual(len(self.sleeps), 1)

    async def test_generation_error_keeps_status_code(self) -> None:
        session = FakeSession(posts=[FakeResponse(500, None, text="internal")])
        with self.assertRaises(GenerationError) as ctx:
            await self._client(session).generate_text("gemini-test", "hello")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertIn("internal", str(ctx.exception))

    async def test_empty_candidates_is_empty_response(self) -> None:
        session = FakeSession(posts=[FakeResponse(200, {"candidates": []})])
        with self.assertRaises(EmptyResponse):
            await self._client(session).generate_text("gemini-test", "hello")

    async def test_generate_text_sends_text_only(self) -> None:
        session = FakeSession(posts=[FakeResponse(200, _generation("Daily report."))])
        result = await self._client(session).generate_text("gemini-test", "combine these")
        self.assertEqual(result.content, "Daily report.")
        parts = session.calls[0][2]["json"]["contents"][0]["parts"]
        self.assertEqual(parts, [{"text": "combine these"}])


if __name__ == "__main__":
    unittest.main()
