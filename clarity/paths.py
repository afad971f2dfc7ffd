from __future__ import annotations

import os
import sys
from datetime import datetime
from pathlib import Path

APP_DIR_NAME = "clarity"


def data_directory() -> Path:
    if sys.platform == "win32":
        local_appdata = os.environ.get("LOCALAPPDATA")
        base = Path(local_appdata) if local_appdata else Path.home() / "AppData" / "Local"
        return base / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    return Path.home() / ".local" / "share" / APP_DIR_NAME


def recordings_directory() -> Path:
    return data_directory() / "recordings"


def database_path() -> Path:
    return data_directory() / "clarity.sqlite3"


def ensure_directories() -> None:
    recordings_directory().mkdir(parents=True, exist_ok=True)


def screenshot_path(storage_path: Path, captured_at: datetime, index: int) -> Path:
    day_folder = Path(storage_path) / captured_at.strftime("%Y-%m-%d")
    day_folder.mkdir(parents=True, exist_ok=True)
    filename = captured_at.strftime("%Y-%m-%d_%H-%M-%S_%f") + f"_{index:06d}.jpg"
    return day_folder / filename


def video_path(storage_path: Path, created_at: datetime) -> Path:
    videos = Path(storage_path) / "videos"
    videos.mkdir(parents=True, exist_ok=True)
    return videos / f"summary_{created_at.strftime('%Y%m%d_%H%M%S')}.mp4"
