"""Shared pytest fixtures: settings rooted in tmp_path, a controllable clock, PCM helpers."""
from __future__ import annotations

import os

import numpy as np
import pytest

from callscribe.config import Settings

SOURCE_RATE = 48000


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def stereo_pcm(frames: int, left: int = 0, right: int | None = None) -> bytes:
    """Constant interleaved stereo s16le."""
    right = left if right is None else right
    data = np.empty(frames * 2, dtype="<i2")
    data[0::2] = left
    data[1::2] = right
    return data.tobytes()


def write_raw(path: str, data: bytes) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    return path


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        RECORDING_ROOT=str(tmp_path / "recordings"),
        SILENCE_END_MS=100,
        JOIN_TIMEOUT_SECONDS=0.2,
        CLEANUP_TIMEOUT_SECONDS=1.0,
        TRANSCRIPTION_URL="http://asr.test/transcribe",
        TRANSCRIPTION_BATCH_URL="",
        TRANSCRIPTION_API_KEY="secret",
        LLM_BASE_URL="",
        LLM_API_KEY="",
        LLM_MODEL="",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'db' / 'transcripts.db'}",
        LOG_FILE="",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
