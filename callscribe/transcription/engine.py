"""
TranscriptionEngine: manifest -> segments -> transcript.

Pipeline for one stopped capture session:
1. Each recording is read, validated, split at other speakers' speech starts (segmenter),
   downmixed to mono at TARGET_SAMPLE_RATE and written as WAV under <recording dir>/segments/.
2. All parts are pooled. With a batch endpoint configured they go up in one request; if the
   batch is not handled every part is uploaded on its own (bounded concurrency).
3. Successes become Segments, everything else a SegmentError. One bad part never stops the rest.
4. Segments are ordered by start time and rendered as "label: text" lines.

Outcome status: "sent" (at least one segment), "failed" (none), "skipped" (not configured
or nothing recorded).
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field

from callscribe.audio.codec import CodecError, downmix_and_resample, encode_container
from callscribe.config import Settings, get_settings
from callscribe.models import Manifest, Recording, Segment, SegmentError, SpeechStartEvent
from callscribe.transcription.client import BatchHandled, TranscriptionClient, TranscriptionError
from callscribe.transcription.merger import build_transcript, order_segments
from callscribe.transcription.segmenter import frame_count, part_path, plan_parts

logger = logging.getLogger(__name__)

STATUS_SENT = "sent"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

MISSING_RESULT_REASON = "no transcription returned for segment"


@dataclass
class PreparedPart:
    """One WAV part on disk, ready for upload."""

    participant_id: str
    label: str
    source_path: str
    started_at: int
    path: str
    filename: str
    data: bytes


@dataclass
class TranscriptionOutcome:
    status: str
    reason: str | None = None
    transcript: str = ""
    segments: list[Segment] = field(default_factory=list)
    errors: list[SegmentError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SENT


def upload_filename(participant_id: str, path: str) -> str:
    """Name a part is uploaded under. Unique across participants within one session."""
    return f"{participant_id}_{os.path.basename(path)}"


def summarize_errors(errors: list[SegmentError]) -> str:
    if not errors:
        return "no segments were produced"
    return json.dumps([e.as_dict() for e in errors])


class TranscriptionEngine:
    """Turns a session manifest into an ordered transcript."""

    def __init__(self, client: TranscriptionClient | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client or TranscriptionClient.from_settings(self._settings)

    @property
    def client(self) -> TranscriptionClient:
        return self._client

    async def submit(self, manifest: Manifest | None) -> TranscriptionOutcome:
        """Segment, upload and merge one session."""
        if manifest is None:
            return TranscriptionOutcome(status=STATUS_FAILED, reason="No recording manifest available")
        if not self._client.is_configured():
            logger.warning("Transcription skipped for session %s: endpoint or API key not configured", manifest.session_id)
            return TranscriptionOutcome(status=STATUS_SKIPPED, reason="Transcription service is not configured")
        if manifest.is_empty:
            return TranscriptionOutcome(status=STATUS_SKIPPED, reason="No audio was captured")

        parts, errors = await self.prepare_parts(manifest)
        segments: list[Segment] = []
        if parts:
            segments, upload_errors = await self.upload_parts(parts)
            errors.extend(upload_errors)

        if not segments:
            reason = f"All uploads failed: {summarize_errors(errors)}"
            logger.error("Transcription failed for session %s: %d error(s)", manifest.session_id, len(errors))
            return TranscriptionOutcome(status=STATUS_FAILED, reason=reason, errors=errors)

        ordered = order_segments(segments)
        for error in errors:
            logger.warning(
                "Segment error for %s (%s): %s", error.label, error.file_path, error.reason
            )
        logger.info(
            "Transcribed session %s: %d segment(s), %d error(s)", manifest.session_id, len(ordered), len(errors)
        )
        return TranscriptionOutcome(
            status=STATUS_SENT,
            transcript=build_transcript(ordered),
            segments=ordered,
            errors=errors,
        )

    # --- segmentation ---

    async def prepare_parts(self, manifest: Manifest) -> tuple[list[PreparedPart], list[SegmentError]]:
        """Split and resample every recording (in the default executor)."""
        timeline = manifest.speech_timeline()
        loop = asyncio.get_event_loop()
        parts: list[PreparedPart] = []
        errors: list[SegmentError] = []
        for recording in manifest.all_recordings():
            label = manifest.label_for(recording.participant_id)
            recording_parts, recording_errors = await loop.run_in_executor(
                None, self._prepare_recording, recording, label, timeline
            )
            parts.extend(recording_parts)
            errors.extend(recording_errors)
        return parts, errors

    def _prepare_recording(
        self, recording: Recording, label: str, timeline: list[SpeechStartEvent]
    ) -> tuple[list[PreparedPart], list[SegmentError]]:
        settings = self._settings
        frame_bytes = settings.source_frame_bytes

        def error(reason: str, started_at: int | None = recording.started_at) -> SegmentError:
            return SegmentError(
                participant_id=recording.participant_id,
                label=label,
                file_path=recording.file_path,
                reason=reason,
                started_at=started_at,
            )

        try:
            with open(recording.file_path, "rb") as f:
                raw = f.read()
        except OSError as e:
            return [], [error(f"Failed to read recording: {e}")]
        try:
            frames = frame_count(len(raw), frame_bytes)
        except CodecError as e:
            return [], [error(str(e))]

        plans = plan_parts(
            recording,
            frames,
            timeline,
            settings.SOURCE_SAMPLE_RATE,
            min_padding_ms=settings.SEGMENT_MIN_PADDING_MS,
            min_part_ms=settings.SEGMENT_MIN_PART_MS,
        )
        parts: list[PreparedPart] = []
        errors: list[SegmentError] = []
        for plan in plans:
            chunk = raw[plan.start_frame * frame_bytes : plan.end_frame * frame_bytes]
            path = part_path(recording, plan)
            try:
                mono = downmix_and_resample(chunk, settings.SOURCE_SAMPLE_RATE, settings.TARGET_SAMPLE_RATE)
                wav = encode_container(mono, settings.TARGET_SAMPLE_RATE, 1, settings.SAMPLE_WIDTH * 8)
            except CodecError as e:
                errors.append(error(f"Failed to encode part {plan.index}: {e}", plan.started_at))
                continue
            try:
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, "wb") as f:
                    f.write(wav)
            except OSError as e:
                errors.append(error(f"Failed to write part {plan.index}: {e}", plan.started_at))
                continue
            parts.append(
                PreparedPart(
                    participant_id=recording.participant_id,
                    label=label,
                    source_path=recording.file_path,
                    started_at=plan.started_at,
                    path=path,
                    filename=upload_filename(recording.participant_id, path),
                    data=wav,
                )
            )
        logger.debug("Prepared %d part(s) from %s", len(parts), recording.file_path)
        return parts, errors

    # --- upload ---

    async def upload_parts(self, parts: list[PreparedPart]) -> tuple[list[Segment], list[SegmentError]]:
        """Batch first when configured, otherwise (or on a non-handled batch) one request per part."""
        async with self._client.open() as http:
            if self._client.batch_url:
                outcome = await self._client.transcribe_batch(http, [(p.filename, p.data) for p in parts])
                if isinstance(outcome, BatchHandled):
                    return self._collect_batch(parts, outcome)
                logger.warning("Batch transcription not handled (%s); uploading parts individually", outcome.reason)
            return await self._upload_individually(http, parts)

    def _collect_batch(
        self, parts: list[PreparedPart], outcome: BatchHandled
    ) -> tuple[list[Segment], list[SegmentError]]:
        segments: list[Segment] = []
        errors: list[SegmentError] = []
        for part in parts:
            if part.filename in outcome.results:
                segments.append(self._segment(part, outcome.results[part.filename]))
            elif part.filename in outcome.errors:
                errors.append(self._error(part, outcome.errors[part.filename]))
            else:
                errors.append(self._error(part, MISSING_RESULT_REASON))
        return segments, errors

    async def _upload_individually(self, http, parts: list[PreparedPart]) -> tuple[list[Segment], list[SegmentError]]:
        semaphore = asyncio.Semaphore(max(1, self._settings.TRANSCRIPTION_MAX_CONCURRENCY))

        async def upload(part: PreparedPart) -> Segment | SegmentError:
            async with semaphore:
                try:
                    text = await self._client.transcribe_file(http, part.filename, part.data)
                except TranscriptionError as e:
                    return self._error(part, str(e))
            return self._segment(part, text)

        results = await asyncio.gather(*(upload(p) for p in parts))
        segments = [r for r in results if isinstance(r, Segment)]
        errors = [r for r in results if isinstance(r, SegmentError)]
        return segments, errors

    @staticmethod
    def _segment(part: PreparedPart, text: str) -> Segment:
        return Segment(
            participant_id=part.participant_id,
            label=part.label,
            started_at=part.started_at,
            text=text,
            audio_path=part.path,
        )

    @staticmethod
    def _error(part: PreparedPart, reason: str) -> SegmentError:
        return SegmentError(
            participant_id=part.participant_id,
            label=part.label,
            file_path=part.source_path,
            reason=reason,
            started_at=part.started_at,
        )
