"""
Mixdown: every participant's raw captures summed onto one timeline.

- Zero time is the earliest of the session id (a millisecond timestamp) and all recording starts.
- Each recording is placed at its frame offset from zero and added into an int32 accumulator.
- The sum is clamped to int16 (plain additive mix, no loudness normalization).
- Output keeps the source layout (interleaved stereo at the source rate).
"""
from __future__ import annotations

import asyncio
import logging
import os
import time

import numpy as np

from callscribe.audio.codec import INT16_MAX, INT16_MIN, encode_container
from callscribe.config import Settings, get_settings
from callscribe.models import Manifest

logger = logging.getLogger(__name__)


def resolve_session_start(manifest: Manifest) -> int:
    """Earliest known timestamp of the session (ms)."""
    candidates: list[int] = []
    try:
        candidates.append(int(manifest.session_id))
    except (TypeError, ValueError):
        pass
    candidates.extend(r.started_at for r in manifest.all_recordings() if r.started_at is not None)
    if not candidates:
        return int(time.time() * 1000)
    return min(candidates)


def frame_offset(offset_ms: float, sample_rate: int) -> int:
    """Milliseconds -> frame index, rounding half up."""
    return max(0, int(np.floor(offset_ms / 1000.0 * sample_rate + 0.5)))


def mix_session_audio(
    manifest: Manifest | None,
    output_path: str | None = None,
    settings: Settings | None = None,
) -> str | None:
    """Write the session mixdown and return its path, or None when there is nothing to mix."""
    if manifest is None or manifest.is_empty or not manifest.directory:
        return None
    settings = settings or get_settings()
    rate = settings.SOURCE_SAMPLE_RATE
    channels = settings.SOURCE_CHANNELS
    frame_bytes = settings.source_frame_bytes
    session_start = resolve_session_start(manifest)

    placed: list[tuple[np.ndarray, int]] = []
    for recording in manifest.all_recordings():
        try:
            with open(recording.file_path, "rb") as f:
                raw = f.read()
        except OSError as e:
            logger.warning("Mixdown: skipping unreadable recording %s: %s", recording.file_path, e)
            continue
        if not raw or len(raw) % frame_bytes != 0:
            logger.warning(
                "Mixdown: skipping %s (%d bytes, not whole %d-byte frames)",
                recording.file_path,
                len(raw),
                frame_bytes,
            )
            continue
        started_at = recording.started_at if recording.started_at is not None else session_start
        offset = frame_offset(max(0, started_at - session_start), rate)
        placed.append((np.frombuffer(raw, dtype="<i2"), offset))

    if not placed:
        return None

    total_frames = max(offset + len(samples) // channels for samples, offset in placed)
    if total_frames == 0:
        return None

    mix = np.zeros(total_frames * channels, dtype=np.int32)
    for samples, offset in placed:
        start = offset * channels
        mix[start : start + len(samples)] += samples

    pcm = np.clip(mix, INT16_MIN, INT16_MAX).astype("<i2")
    final_path = os.path.abspath(output_path) if output_path else os.path.join(
        os.path.abspath(manifest.directory), settings.MIXDOWN_FILENAME
    )
    os.makedirs(os.path.dirname(final_path) or ".", exist_ok=True)
    with open(final_path, "wb") as f:
        f.write(encode_container(pcm.tobytes(), rate, channels, settings.SAMPLE_WIDTH * 8))
    logger.info("Mixdown written: %s (%d recordings, %.1fs)", final_path, len(placed), total_frames / rate)
    return final_path


async def mix_session_audio_async(
    manifest: Manifest | None,
    output_path: str | None = None,
    settings: Settings | None = None,
) -> str | None:
    """Run the mixdown in an executor so the event loop keeps serving other calls."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, mix_session_audio, manifest, output_path, settings)
