"""
Segmenter: cut each recording at the moments other participants started speaking.

A participant's recording runs until they fall silent, so it can span several turns of a
conversation. To keep the final transcript in speaking order, each recording is split at
every other participant's speech start that falls inside it:

- split candidates are other participants' speech starts strictly inside the recording,
  at least `min_padding_ms` away from both edges and from an already accepted split;
- boundaries (splits + recording end) become frame indexes via round(ms / 1000 * rate),
  clamped so parts are contiguous and never overlap;
- a part starting at a split is stamped split + 1ms so it sorts after the interrupting turn.

Parts shorter than `min_part_ms` are kept as long as they hold at least one frame: a cut at a
real boundary can legitimately leave a short trailing word.
"""
from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Iterable

from callscribe.audio.codec import AlignmentError, EmptyAudioError, duration_ms
from callscribe.models import Recording, SpeechStartEvent

logger = logging.getLogger(__name__)

SPLIT_NUDGE_MS = 1


@dataclass(frozen=True)
class PartPlan:
    """Frame range [start_frame, end_frame) of a recording, stamped with its start time."""

    index: int
    start_frame: int
    end_frame: int
    started_at: int

    @property
    def frame_count(self) -> int:
        return self.end_frame - self.start_frame


def frame_count(byte_length: int, frame_bytes: int) -> int:
    """Frames in a raw recording. Raises on empty or misaligned input."""
    if byte_length <= 0:
        raise EmptyAudioError("Recording is empty")
    if byte_length % frame_bytes != 0:
        raise AlignmentError(f"Recording length {byte_length} is not a multiple of the {frame_bytes}-byte frame")
    return byte_length // frame_bytes


def _ms_to_frame(elapsed_ms: float, sample_rate: int) -> int:
    return int(math.floor(elapsed_ms / 1000.0 * sample_rate + 0.5))


def compute_split_points(
    recording: Recording,
    segment_end: float,
    timeline: Iterable[SpeechStartEvent],
    min_padding_ms: float,
) -> list[int]:
    """Accepted split timestamps (ascending) for one recording."""
    t0 = recording.started_at
    accepted: list[int] = []
    for event in sorted(timeline, key=lambda e: e.timestamp):
        e = event.timestamp
        if event.participant_id == recording.participant_id:
            continue
        if not (t0 < e < segment_end):
            continue
        if e - t0 < min_padding_ms or segment_end - e < min_padding_ms:
            continue
        if any(abs(e - split) < min_padding_ms for split in accepted):
            continue
        accepted.append(e)
    accepted.sort()
    return accepted


def plan_parts(
    recording: Recording,
    frames: int,
    timeline: Iterable[SpeechStartEvent],
    sample_rate: int,
    min_padding_ms: float = 50,
    min_part_ms: float = 80,
) -> list[PartPlan]:
    """Split one recording of `frames` frames into contiguous parts."""
    t0 = recording.started_at
    segment_end = t0 + duration_ms(frames, sample_rate)
    splits = compute_split_points(recording, segment_end, timeline, min_padding_ms)
    split_set = set(splits)

    parts: list[PartPlan] = []
    previous_time: float = t0
    previous_index = 0
    for boundary in [*splits, segment_end]:
        index = _ms_to_frame(boundary - t0, sample_rate)
        index = max(previous_index, min(frames, index))
        part_frames = index - previous_index
        if part_frames <= 0 or boundary - previous_time <= 0:
            previous_time = boundary
            continue
        if duration_ms(part_frames, sample_rate) < min_part_ms:
            logger.debug(
                "Keeping short part (%d frames, %.1fms) of %s at %s",
                part_frames,
                duration_ms(part_frames, sample_rate),
                recording.file_path,
                previous_time,
            )
        started_at = int(previous_time)
        if previous_time in split_set:
            started_at += SPLIT_NUDGE_MS
        parts.append(
            PartPlan(
                index=len(parts),
                start_frame=previous_index,
                end_frame=index,
                started_at=started_at,
            )
        )
        previous_index = index
        previous_time = boundary
    return parts


def part_path(recording: Recording, part: PartPlan) -> str:
    """<recording dir>/segments/<source stem>-<start ms>-<index>.wav"""
    directory = os.path.join(os.path.dirname(recording.file_path), "segments")
    stem = os.path.splitext(os.path.basename(recording.file_path))[0]
    return os.path.join(directory, f"{stem}-{part.started_at}-{part.index}.wav")
