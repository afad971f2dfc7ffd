from __future__ import annotations

from pathlib import Path

from loguru import logger

from .database import ClarityDatabase
from .models import Language, ResolutionMode
from .session import (
    DEFAULT_LANGUAGE,
    DEFAULT_MODEL,
    DEFAULT_RESOLUTION,
    DEFAULT_SUMMARY_INTERVAL_SECONDS,
    SessionConfig,
)

API_KEY_SETTING_KEY = "gemini_api_key"
MODEL_SETTING_KEY = "ai_model"
SUMMARY_INTERVAL_SETTING_KEY = "summary_interval_seconds"
RESOLUTION_SETTING_KEY = "video_resolution"
LANGUAGE_SETTING_KEY = "language"
PROMPT_SETTING_KEY_PREFIX = "ai_prompt_"

MIN_SUMMARY_INTERVAL_SECONDS = 10
MAX_SUMMARY_INTERVAL_SECONDS = 3600

DEFAULT_PROMPTS = {
    Language.EN: (
        "Analyze this screen activity video and provide a concise activity summary. "
        "Focus on: 1) Main apps/websites used; 2) Activity type (work/entertainment/learning, etc.); "
        "3) Any distractions or inefficient behaviors. Respond in English, keep it under 100 words."
    ),
    Language.ZH: (
        "分析这段屏幕活动视频，提供简洁的活动摘要。重点关注：1) 主要使用的应用/网站；"
        "2) 活动类型（工作/娱乐/学习等）；3) 是否有分心或低效行为。用中文回答，控制在100字以内。"
    ),
}


class SettingsProvider:
    """Persisted settings that are pushed into the live session on every write."""

    def __init__(self, db: ClarityDatabase, config: SessionConfig | None = None):
        self._db = db
        self._config = config

    def attach(self, config: SessionConfig) -> None:
        self._config = config

    def load_session_config(self, storage_path: Path) -> SessionConfig:
        config = SessionConfig(
            storage_path=storage_path,
            summary_interval_seconds=self.get_summary_interval(),
            api_key=self.get_api_key(),
            model=self.get_model(),
            resolution_mode=self.get_resolution_mode(),
            language=self.get_language(),
        )
        self.attach(config)
        return config

    def get_api_key(self) -> str | None:
        value = (self._db.get_setting(API_KEY_SETTING_KEY) or "").strip()
        return value or None

    def set_api_key(self, api_key: str) -> None:
        value = api_key.strip()
        self._db.set_setting(API_KEY_SETTING_KEY, value)
        if self._config is not None:
            self._config.api_key.set(value or None)
        logger.info("API key {}", "updated" if value else "cleared")

    def get_model(self) -> str:
        value = (self._db.get_setting(MODEL_SETTING_KEY) or "").strip()
        return value or DEFAULT_MODEL

    def set_model(self, model: str) -> None:
        value = model.strip()
        if not value:
            raise ValueError("Model cannot be empty.")
        self._db.set_setting(MODEL_SETTING_KEY, value)
        if self._config is not None:
            self._config.model.set(value)
        logger.info("Model set to {}", value)

    def get_summary_interval(self) -> int:
        raw = self._db.get_setting(SUMMARY_INTERVAL_SETTING_KEY)
        if raw is None:
            return DEFAULT_SUMMARY_INTERVAL_SECONDS
        try:
            parsed = int(raw)
        except ValueError:
            logger.warning("Ignoring invalid stored summary interval {!r}", raw)
            return DEFAULT_SUMMARY_INTERVAL_SECONDS
        if not MIN_SUMMARY_INTERVAL_SECONDS <= parsed <= MAX_SUMMARY_INTERVAL_SECONDS:
            return DEFAULT_SUMMARY_INTERVAL_SECONDS
        return parsed

    def set_summary_interval(self, seconds: int) -> None:
        seconds = int(seconds)
        if seconds < MIN_SUMMARY_INTERVAL_SECONDS:
            raise ValueError(f"Summary interval must be at least {MIN_SUMMARY_INTERVAL_SECONDS} seconds.")
        if seconds > MAX_SUMMARY_INTERVAL_SECONDS:
            raise ValueError(f"Summary interval must be at most {MAX_SUMMARY_INTERVAL_SECONDS} seconds.")
        self._db.set_setting(SUMMARY_INTERVAL_SETTING_KEY, str(seconds))
        if self._config is not None:
            self._config.summary_interval_seconds.set(seconds)
        logger.info("Summary interval set to {}s", seconds)

    def get_resolution_mode(self) -> ResolutionMode:
        raw = self._db.get_setting(RESOLUTION_SETTING_KEY)
        try:
            return ResolutionMode(raw)
        except ValueError:
            return DEFAULT_RESOLUTION

    def set_resolution_mode(self, mode: str | ResolutionMode) -> None:
        try:
            resolved = ResolutionMode(mode)
        except ValueError:
            raise ValueError("Resolution must be 'low' or 'default'.") from None
        self._db.set_setting(RESOLUTION_SETTING_KEY, resolved.value)
        if self._config is not None:
            self._config.resolution_mode.set(resolved)
        logger.info("Video resolution set to {}", resolved.value)

    def get_language(self) -> Language:
        raw = self._db.get_setting(LANGUAGE_SETTING_KEY)
        try:
            return Language(raw)
        except ValueError:
            return DEFAULT_LANGUAGE

    def set_language(self, language: str | Language) -> None:
        try:
            resolved = Language(language)
        except ValueError:
            raise ValueError("Language must be 'en' or 'zh'.") from None
        self._db.set_setting(LANGUAGE_SETTING_KEY, resolved.value)
        if self._config is not None:
            self._config.language.set(resolved)
        logger.info("Language set to {}", resolved.value)

    def get_prompt(self, language: Language | None = None) -> str:
        language = language or self.get_language()
        stored = (self._db.get_setting(PROMPT_SETTING_KEY_PREFIX + language.value) or "").strip()
        return stored or DEFAULT_PROMPTS[language]

    def set_prompt(self, prompt: str, language: Language | None = None) -> None:
        value = prompt.strip()
        if not value:
            raise ValueError("Prompt cannot be empty.")
        language = language or self.get_language()
        self._db.set_setting(PROMPT_SETTING_KEY_PREFIX + language.value, value)

    def reset_prompt(self, language: Language | None = None) -> str:
        language = language or self.get_language()
        default = DEFAULT_PROMPTS[language]
        self._db.set_setting(PROMPT_SETTING_KEY_PREFIX + language.value, default)
        return default
