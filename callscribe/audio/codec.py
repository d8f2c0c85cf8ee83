"""
Sample codec: source PCM (interleaved stereo, 16-bit) -> mono PCM at a lower rate,
plus minimal WAV container encode/parse.

Rounding: every average (L/R downmix and decimation mean) rounds half away from zero.
Resampling is decimation by an integer factor only; any other ratio is rejected.
"""
from __future__ import annotations

import io
import struct
import wave
from dataclasses import dataclass

import numpy as np

INT16_MIN = -32768
INT16_MAX = 32767

WAV_HEADER_BYTES = 44
WAVE_FORMAT_PCM = 1

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


class CodecError(ValueError):
    """Base for audio conversion failures."""


class EmptyAudioError(CodecError):
    """Input buffer contained no samples."""


class AlignmentError(CodecError):
    """Input length is not a whole number of frames."""


class UnsupportedRateError(CodecError):
    """Source/target rate pair is not an integer decimation."""


class ContainerFormatError(CodecError):
    """Bytes are not a minimal PCM WAV container."""


@dataclass(frozen=True)
class ContainerInfo:
    """Fields of a parsed 44-byte WAV header."""

    format_tag: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bit_depth: int
    data_length: int


def _rounded_mean(sums: np.ndarray, count: int) -> np.ndarray:
    """sums / count rounded half away from zero, in integer arithmetic."""
    magnitude = (2 * np.abs(sums) + count) // (2 * count)
    return np.where(sums < 0, -magnitude, magnitude)


def decimation_factor(source_rate: int, target_rate: int) -> int:
    if source_rate <= 0 or target_rate <= 0:
        raise UnsupportedRateError(f"Sample rates must be positive (got {source_rate} -> {target_rate})")
    if target_rate > source_rate or source_rate % target_rate != 0:
        raise UnsupportedRateError(
            f"Cannot resample {source_rate} Hz to {target_rate} Hz: ratio is not an integer decimation"
        )
    return source_rate // target_rate


def downmix_and_resample(stereo_pcm: bytes, source_rate: int, target_rate: int) -> bytes:
    """
    Average L/R of interleaved 16-bit stereo, then decimate to target_rate.

    Each output sample is the mean of the `factor` mono samples it covers, clamped to int16.
    A trailing group shorter than `factor` is averaged over the samples it has, so any
    non-empty input yields at least one output sample.
    """
    factor = decimation_factor(source_rate, target_rate)
    if not stereo_pcm:
        raise EmptyAudioError("Audio buffer is empty")
    frame_bytes = 2 * 2
    if len(stereo_pcm) % frame_bytes != 0:
        raise AlignmentError(
            f"Buffer length {len(stereo_pcm)} is not a multiple of the {frame_bytes}-byte stereo frame"
        )

    frames = np.frombuffer(stereo_pcm, dtype="<i2").astype(np.int64).reshape(-1, 2)
    mono = _rounded_mean(frames.sum(axis=1), 2)

    if factor > 1:
        usable = (len(mono) // factor) * factor
        decimated = _rounded_mean(mono[:usable].reshape(-1, factor).sum(axis=1), factor)
        tail = mono[usable:]
        if len(tail):
            decimated = np.append(decimated, _rounded_mean(tail.sum(), len(tail)))
        mono = decimated
    return np.clip(mono, INT16_MIN, INT16_MAX).astype("<i2").tobytes()


def encode_container(samples: bytes | np.ndarray, sample_rate: int, channels: int, bit_depth: int = 16) -> bytes:
    """Wrap little-endian PCM samples in a 44-byte WAV header."""
    if isinstance(samples, np.ndarray):
        samples = samples.astype(f"<i{bit_depth // 8}").tobytes()
    if not samples:
        raise EmptyAudioError("Cannot encode an empty sample buffer")
    if bit_depth % 8 != 0 or channels <= 0:
        raise ContainerFormatError(f"Unsupported layout: {channels} channel(s) at {bit_depth} bits")
    block_align = channels * bit_depth // 8
    if len(samples) % block_align != 0:
        raise AlignmentError(f"Sample data length {len(samples)} is not a multiple of block align {block_align}")

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(bit_depth // 8)
        wav.setframerate(sample_rate)
        wav.writeframes(samples)
    return buf.getvalue()


def parse_container_header(data: bytes) -> ContainerInfo:
    """Parse and sanity-check the fixed 44-byte PCM WAV header."""
    if len(data) < WAV_HEADER_BYTES:
        raise ContainerFormatError(f"Container is {len(data)} bytes; header needs {WAV_HEADER_BYTES}")
    (
        riff,
        riff_size,
        wave_id,
        fmt_id,
        fmt_size,
        format_tag,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bit_depth,
        data_id,
        data_length,
    ) = _HEADER.unpack_from(data, 0)
    if riff != b"RIFF" or wave_id != b"WAVE" or fmt_id != b"fmt " or data_id != b"data":
        raise ContainerFormatError("Missing RIFF/WAVE/fmt/data markers")
    if fmt_size != 16 or format_tag != WAVE_FORMAT_PCM:
        raise ContainerFormatError(f"Not a plain PCM header (fmt size {fmt_size}, format {format_tag})")
    if riff_size != 36 + data_length:
        raise ContainerFormatError(f"RIFF size {riff_size} disagrees with data length {data_length}")
    return ContainerInfo(
        format_tag=format_tag,
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bit_depth=bit_depth,
        data_length=data_length,
    )


def duration_ms(frame_count: int, sample_rate: int) -> float:
    return frame_count * 1000.0 / sample_rate
