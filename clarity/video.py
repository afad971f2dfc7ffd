from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Sequence

from loguru import logger

from .errors import AssemblyError, EncoderNotFound, VideoEncodeFailure

ENCODER_CANDIDATES = ("ffmpeg", "/usr/local/bin/ffmpeg", "/opt/homebrew/bin/ffmpeg")
DEFAULT_FPS = 1

# Frames are letterboxed into 640x360.
SCALE_FILTER = "scale=640:360:force_original_aspect_ratio=decrease,pad=640:360:(ow-iw)/2:(oh-ih)/2"
CRF = "23"


def build_concat_list(image_paths: Sequence[Path | str], fps: int) -> str:
    """Concat demuxer script showing each image for 1/fps seconds.

    The last image is listed a second time because the demuxer ignores the
    duration of the final entry.
    """
    if fps <= 0:
        raise ValueError("fps must be positive.")
    if not image_paths:
        return ""

    duration = 1.0 / fps
    lines: list[str] = []
    for path in image_paths:
        lines.append(f"file '{_quote(path)}'")
        lines.append(f"duration {duration}")
    lines.append(f"file '{_quote(image_paths[-1])}'")
    return "\n".join(lines) + "\n"


def _quote(path: Path | str) -> str:
    return str(path).replace("'", "'\\''")


class VideoAssembler:
    def __init__(self, candidates: Sequence[str] = ENCODER_CANDIDATES):
        self._candidates = tuple(candidates)
        self._encoder: str | None = None

    async def find_encoder(self) -> str:
        if self._encoder is not None:
            return self._encoder

        for candidate in self._candidates:
            if await _responds_to_version_probe(candidate):
                logger.info("Found ffmpeg at: {}", candidate)
                self._encoder = candidate
                return candidate

        message = f"ffmpeg not found. Please install ffmpeg to create videos. Tried paths: {list(self._candidates)}"
        logger.error(message)
        raise EncoderNotFound(message)

    async def assemble(self, image_paths: Sequence[Path | str], output_path: Path, fps: int = DEFAULT_FPS) -> Path:
        if not image_paths:
            raise AssemblyError("No images to create video from.")

        encoder = await self.find_encoder()
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        fd, list_name = tempfile.mkstemp(prefix="ffmpeg_list_", suffix=".txt", dir=output_path.parent)
        list_path = Path(list_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(build_concat_list(image_paths, fps))

            logger.info("Running ffmpeg to create video from {} images", len(image_paths))
            process = await asyncio.create_subprocess_exec(
                encoder,
                "-f", "concat",
                "-safe", "0",
                "-i", str(list_path),
                "-vf", SCALE_FILTER,
                "-c:v", "libx264",
                "-preset", "fast",
                "-crf", CRF,
                "-pix_fmt", "yuv420p",
                "-r", str(fps),
                "-y",
                str(output_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError as exc:
            raise VideoEncodeFailure(f"Failed to execute ffmpeg: {exc}") from exc
        finally:
            list_path.unlink(missing_ok=True)

        if process.returncode != 0:
            diagnostics = stderr.decode("utf-8", errors="replace")
            raise VideoEncodeFailure(f"ffmpeg failed: {diagnostics.strip()[-2000:]}", stderr=diagnostics)
        return output_path


async def _responds_to_version_probe(executable: str) -> bool:
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            "-version",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return False
    return await process.wait() == 0
