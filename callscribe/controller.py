"""
RecordingController: join -> capture -> stop -> transcribe / mixdown / summarize / persist.

One active call per context. stop() severs the call first so no audio arrives while the
session tears down, then runs post-processing on the manifest. An abnormal disconnect runs
the same stop path, so nothing recorded is lost and nothing is processed twice.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from callscribe.audio.codec import CodecError
from callscribe.audio.mixdown import mix_session_audio_async
from callscribe.call.base import CallHandle
from callscribe.capture.manager import CaptureManager, CaptureOptions
from callscribe.capture.session import CaptureSession
from callscribe.config import Settings, get_settings
from callscribe.models import Manifest, SessionInfo
from callscribe.storage.repository import SessionRepository
from callscribe.summary.client import STATUS_SUMMARIZED, SummaryClient, SummaryOutcome
from callscribe.transcription.engine import (
    STATUS_FAILED,
    STATUS_SENT,
    STATUS_SKIPPED,
    TranscriptionEngine,
    TranscriptionOutcome,
)

logger = logging.getLogger(__name__)


class RecordingError(Exception):
    """A join could not be completed; the message is safe to show to users."""


class AlreadyRecordingError(RecordingError):
    pass


class JoinTimeoutError(RecordingError):
    pass


@dataclass
class _ActiveCall:
    call: CallHandle
    info: SessionInfo
    remove_disconnect_listener: Callable[[], None] | None = None


@dataclass
class StopReport:
    """Everything a front end needs to tell users after a stop."""

    context_id: str
    session_id: str | None = None
    manifest: Manifest | None = None
    transcription: TranscriptionOutcome | None = None
    summary: SummaryOutcome | None = None
    mixdown_path: str | None = None
    saved: bool = False
    record_id: str | None = None
    messages: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        transcription = self.transcription
        return {
            "context_id": self.context_id,
            "session_id": self.session_id,
            "transcription_status": transcription.status if transcription else None,
            "transcript": transcription.transcript if transcription else "",
            "errors": [e.as_dict() for e in transcription.errors] if transcription else [],
            "summary_status": self.summary.status if self.summary else None,
            "summary": self.summary.summary if self.summary else None,
            "mixdown_path": self.mixdown_path,
            "saved": self.saved,
            "record_id": self.record_id,
            "messages": list(self.messages),
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


class RecordingController:
    """Front-end agnostic recording workflow. One instance per process."""

    def __init__(
        self,
        manager: CaptureManager,
        engine: TranscriptionEngine,
        summarizer: SummaryClient | None = None,
        repository: SessionRepository | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._manager = manager
        self._engine = engine
        self._summarizer = summarizer
        self._repository = repository
        self._active: dict[str, _ActiveCall] = {}
        self._background: set[asyncio.Task] = set()

    @property
    def manager(self) -> CaptureManager:
        return self._manager

    def is_recording(self, context_id: str) -> bool:
        return context_id in self._active

    def active_contexts(self) -> list[str]:
        return list(self._active)

    async def join(self, call: CallHandle, context_id: str, info: SessionInfo | None = None) -> CaptureSession:
        """Wait for the call to become ready and start capturing. Leaves the call on failure."""
        if context_id in self._active or self._manager.get(context_id) is not None:
            raise AlreadyRecordingError(
                'I am already connected and recording. Send "stop" when you want me to stop.'
            )
        info = info or SessionInfo(context_id=context_id)
        entry = _ActiveCall(call=call, info=info)
        self._active[context_id] = entry
        try:
            await asyncio.wait_for(call.wait_ready(), timeout=self._settings.JOIN_TIMEOUT_SECONDS)
            session = await self._manager.start(
                call,
                context_id,
                CaptureOptions(
                    label_resolver=lambda pid: info.participants.get(pid),
                    metadata={"context_name": info.context_name, "channel_name": info.channel_name},
                ),
            )
        except asyncio.TimeoutError:
            self._active.pop(context_id, None)
            await self._leave(call, context_id)
            logger.warning("Join timed out after %.0fs for context %s", self._settings.JOIN_TIMEOUT_SECONDS, context_id)
            raise JoinTimeoutError("I could not join the call in time. Check permissions and try again.")
        except Exception as e:
            self._active.pop(context_id, None)
            await self._leave(call, context_id)
            logger.exception("Failed to join call for context %s", context_id)
            raise RecordingError("I could not join the call. Check permissions and try again.") from e

        if info.started_at is None:
            info.started_at = session.created_at
        entry.remove_disconnect_listener = call.add_disconnect_listener(
            lambda reason: self._on_disconnect(context_id, reason)
        )
        logger.info("Recording context %s as session %s", context_id, session.session_id)
        return session

    def _on_disconnect(self, context_id: str, reason: str) -> None:
        logger.warning("Call for context %s disconnected (%s); finalizing session", context_id, reason)
        task = asyncio.create_task(self.stop(context_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _leave(self, call: CallHandle, context_id: str) -> None:
        try:
            await call.leave()
        except Exception:
            logger.exception("Leaving call for context %s failed", context_id)

    async def stop(self, context_id: str) -> StopReport | None:
        """Sever the call, finalize capture and run post-processing. None when not recording."""
        entry = self._active.pop(context_id, None)
        if entry is None:
            return None
        if entry.remove_disconnect_listener is not None:
            entry.remove_disconnect_listener()
        await self._leave(entry.call, context_id)

        report = StopReport(context_id=context_id)
        manifest = await self._manager.stop(context_id)
        if manifest is None or manifest.is_empty:
            report.manifest = manifest
            report.session_id = manifest.session_id if manifest else None
            report.messages.append("Stopped listening, but there was nothing recorded.")
            return report

        info = entry.info
        info.ended_at = _now_ms()
        for participant_id, label in manifest.labels.items():
            info.participants.setdefault(participant_id, label)
        report.manifest = manifest
        report.session_id = manifest.session_id

        report.transcription = await self._engine.submit(manifest)
        report.messages.append(self._transcription_message(report.transcription))

        try:
            report.mixdown_path = await mix_session_audio_async(manifest, settings=self._settings)
        except (OSError, CodecError) as e:
            logger.warning("Mixdown failed for session %s: %s", manifest.session_id, e)

        if self._summarizer is not None and report.transcription.status == STATUS_SENT:
            report.summary = await self._summarizer.summarize(
                report.transcription.transcript, info, report.transcription.segments
            )
            if report.summary.status == STATUS_SUMMARIZED:
                report.messages.append(f"Summary:\n{report.summary.summary}")

        report.saved = await self._persist(manifest, info, report)
        return report

    @staticmethod
    def _transcription_message(outcome: TranscriptionOutcome) -> str:
        if outcome.status == STATUS_SENT:
            return "Recording stopped. I sent the audio to the transcription service."
        if outcome.status == STATUS_SKIPPED:
            return "Recording stopped. Configure the transcription endpoint to process the audio."
        if outcome.status == STATUS_FAILED:
            return f"Recording stopped, but I could not reach the transcription service: {outcome.reason}"
        return "Recording stopped."

    async def _persist(self, manifest: Manifest, info: SessionInfo, report: StopReport) -> bool:
        if self._repository is None:
            return False
        transcription = report.transcription
        try:
            report.record_id = await self._repository.save_session(
                manifest.session_id,
                info,
                transcription.segments if transcription else [],
                transcript=transcription.transcript if transcription else None,
                summary=report.summary.summary if report.summary else None,
                audio_path=report.mixdown_path,
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to save session %s: %s", manifest.session_id, e)
            return False
        return True

    async def stop_all(self) -> list[StopReport]:
        """Stop every active recording (shutdown)."""
        reports = []
        for context_id in list(self._active):
            report = await self.stop(context_id)
            if report is not None:
                reports.append(report)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        return reports
