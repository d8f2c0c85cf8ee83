"""Application configuration. Loads from env vars."""
from __future__ import annotations

import logging

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    # Storage: raw captures land under RECORDING_ROOT/<context>/<session>/<participant>/
    RECORDING_ROOT: str = "./recordings"
    MIXDOWN_FILENAME: str = "mixdown.wav"

    # Source audio from the call platform: PCM 16-bit stereo, 48kHz
    SOURCE_SAMPLE_RATE: int = 48000
    SOURCE_CHANNELS: int = 2
    SAMPLE_WIDTH: int = 2  # 16-bit

    # Segments uploaded for transcription are mono at this rate (must divide SOURCE_SAMPLE_RATE)
    TARGET_SAMPLE_RATE: int = 16000

    # Capture lifecycle
    SILENCE_END_MS: int = 1000  # no audio for this long closes a participant's stream
    JOIN_TIMEOUT_SECONDS: float = 20.0
    CLEANUP_TIMEOUT_SECONDS: float = 5.0

    # Segmentation: ignore interruptions closer than this to an edge or to another split
    SEGMENT_MIN_PADDING_MS: int = 50
    SEGMENT_MIN_PART_MS: int = 80

    # Transcription service. Empty URL or key = transcription skipped.
    TRANSCRIPTION_URL: str = ""
    TRANSCRIPTION_BATCH_URL: str = ""  # empty = upload segments one by one
    TRANSCRIPTION_API_KEY: str = ""
    TRANSCRIPTION_HEADER_NAME: str = "X-API-Key"
    TRANSCRIPTION_TIMEOUT_SECONDS: float = 60.0
    TRANSCRIPTION_MAX_CONCURRENCY: int = 4

    # Summaries: any OpenAI-compatible server. Empty base URL or key = summary skipped.
    LLM_BASE_URL: str = ""
    LLM_API_KEY: str = ""
    LLM_MODEL: str = ""  # empty = first model listed by the server
    LLM_TIMEOUT_SECONDS: float = 60.0
    SUMMARY_TEMPERATURE: float = 0.3
    SUMMARY_MAX_TOKENS: int = 400
    SUMMARY_MAX_EXCERPTS: int = 12
    SUMMARY_EXCERPT_CHARS: int = 500

    # HTTP server
    HOST: str = "0.0.0.0"
    PORT: int = 16384

    # Persistence
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/transcripts.db"

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path = also write to file (empty = console only).
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def source_frame_bytes(self) -> int:
        """Bytes per source frame (all channels of one sample instant)."""
        return self.SOURCE_CHANNELS * self.SAMPLE_WIDTH


def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Apply LOG_LEVEL and optional LOG_FILE to the root logger."""
    settings = settings or get_settings()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
