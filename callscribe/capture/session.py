"""
CaptureSession: one recording episode for one call context.

- Every speech-start signal for a participant without an open stream opens a new raw
  capture under <root>/<context>/<session>/<participant>/<start_ms>.pcm.
- The stream closes by itself after SILENCE_END_MS without audio.
- A signal for a participant whose stream is still open is ignored.
- Labels are resolved once per participant (first seen wins) and frozen.
- destroy() runs every registered disposer in reverse order; one failing disposer never
  stops the others. Files are never deleted here.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import os
import time
from typing import Any, Awaitable, Callable, Optional

from callscribe.call.base import CallHandle, LabelResolver
from callscribe.capture.sink import RawCaptureSink
from callscribe.config import Settings, get_settings
from callscribe.models import Manifest, Recording

logger = logging.getLogger(__name__)

Disposer = Callable[[], Optional[Awaitable[Any]]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class CaptureSession:
    """Per-participant raw capture driven by speech-start signals from one call."""

    def __init__(
        self,
        call: CallHandle,
        context_id: str,
        label_resolver: LabelResolver | None = None,
        *,
        root_dir: str | None = None,
        settings: Settings | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._call = call
        self._label_resolver = label_resolver
        self._clock = clock or _now_ms
        self.context_id = context_id
        self.created_at = self._clock()
        self.session_id = str(self.created_at)
        self.root_dir = root_dir or self._settings.RECORDING_ROOT
        self.directory = os.path.join(self.root_dir, context_id, self.session_id)

        self._recordings: dict[str, list[Recording]] = {}
        self._labels: dict[str, str] = {}
        self._open_streams: dict[str, RawCaptureSink] = {}
        self._cleanups: list[Disposer] = []
        self._destroyed = False

    @classmethod
    async def open(
        cls,
        call: CallHandle,
        context_id: str,
        label_resolver: LabelResolver | None = None,
        **kwargs: Any,
    ) -> "CaptureSession":
        """Create the session directory and start listening for speech."""
        session = cls(call, context_id, label_resolver, **kwargs)
        await session.init()
        return session

    async def init(self) -> None:
        os.makedirs(self.directory, exist_ok=True)
        remove_listener = self._call.add_speech_listener(self.on_speech_start)
        self._cleanups.append(remove_listener)
        logger.info("Capture session %s started for context %s at %s", self.session_id, self.context_id, self.directory)

    # --- speech events ---

    def on_speech_start(self, participant_id: str, timestamp: int | None = None) -> asyncio.Task | None:
        """
        Entry point for the call platform. Opens a stream for the participant unless one is
        already open. Returns the capture task, or None when the signal was ignored.
        """
        if self._destroyed:
            return None
        if participant_id in self._open_streams:
            logger.debug("Capture: %s already has an open stream; ignoring speech start", participant_id)
            return None

        started_at = timestamp if timestamp is not None else self._clock()
        sink = RawCaptureSink(self._next_path(participant_id, started_at), self._settings.source_frame_bytes)
        # Reserve the slot before any await so a second signal cannot open a duplicate stream
        self._open_streams[participant_id] = sink
        task = asyncio.create_task(self._capture(participant_id, sink, started_at))

        async def dispose() -> None:
            try:
                if not task.done():
                    task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            finally:
                sink.close()

        self._cleanups.append(dispose)
        # A finished burst has already closed its sink; only live bursts need disposing
        task.add_done_callback(lambda _: self._discard_cleanup(dispose))
        return task

    def _discard_cleanup(self, disposer: Disposer) -> None:
        try:
            self._cleanups.remove(disposer)
        except ValueError:
            pass

    def _next_path(self, participant_id: str, started_at: int) -> str:
        participant_dir = os.path.join(self.directory, participant_id)
        path = os.path.join(participant_dir, f"{started_at}.pcm")
        taken = {r.file_path for r in self._recordings.get(participant_id, [])}
        suffix = 1
        while path in taken or os.path.exists(path):
            path = os.path.join(participant_dir, f"{started_at}-{suffix}.pcm")
            suffix += 1
        return path

    async def _resolve_label(self, participant_id: str) -> None:
        if participant_id in self._labels:
            return
        label: str | None = None
        if self._label_resolver is not None:
            try:
                result = self._label_resolver(participant_id)
                if inspect.isawaitable(result):
                    result = await result
                label = result
            except Exception as e:
                logger.warning("Label lookup failed for %s: %s", participant_id, e)
        # First seen wins: another burst may have resolved while we awaited
        self._labels.setdefault(participant_id, (label or "").strip() or participant_id)

    async def _capture(self, participant_id: str, sink: RawCaptureSink, started_at: int) -> None:
        recording: Recording | None = None
        try:
            await self._resolve_label(participant_id)
            try:
                sink.open()
            except OSError as e:
                logger.error("Failed to start capture for %s: %s", participant_id, e)
                return
            recording = Recording(participant_id=participant_id, file_path=sink.path, started_at=started_at)
            self._recordings.setdefault(participant_id, []).append(recording)
            await self._pump(participant_id, sink)
        except Exception:
            logger.exception("Audio pipeline error for %s; abandoning this burst", participant_id)
        finally:
            sink.close()
            if self._open_streams.get(participant_id) is sink:
                del self._open_streams[participant_id]
            if recording is not None and sink.bytes_written == 0:
                # Nothing usable was captured; keep the file but leave it out of the manifest
                self._recordings[participant_id].remove(recording)
                if not self._recordings[participant_id]:
                    del self._recordings[participant_id]

    async def _pump(self, participant_id: str, sink: RawCaptureSink) -> None:
        """Copy audio into the sink until SILENCE_END_MS passes without a chunk."""
        silence_sec = self._settings.SILENCE_END_MS / 1000.0
        stream = self._call.subscribe(participant_id)
        iterator = stream.__aiter__()
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=silence_sec)
                except asyncio.TimeoutError:
                    logger.debug("Capture: %s silent for %dms; closing %s", participant_id, self._settings.SILENCE_END_MS, sink.path)
                    break
                except StopAsyncIteration:
                    break
                sink.append(chunk)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug("Closing audio subscription for %s failed: %s", participant_id, e)

    # --- state ---

    def get_manifest(self) -> Manifest:
        """Snapshot of recordings and labels. Safe before or after destroy()."""
        return Manifest(
            context_id=self.context_id,
            session_id=self.session_id,
            directory=self.directory,
            recordings={pid: tuple(items) for pid, items in self._recordings.items() if items},
            labels=dict(self._labels),
        )

    def has_open_stream(self, participant_id: str) -> bool:
        return participant_id in self._open_streams

    @property
    def open_stream_count(self) -> int:
        return len(self._open_streams)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    async def destroy(self) -> None:
        """Run disposers last-registered first. Failures are logged; the rest still run."""
        self._destroyed = True
        timeout = self._settings.CLEANUP_TIMEOUT_SECONDS
        while self._cleanups:
            disposer = self._cleanups.pop()
            try:
                result = disposer()
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Cleanup step timed out after %.1fs in session %s", timeout, self.session_id)
            except Exception:
                logger.exception("Cleanup error in session %s", self.session_id)
        logger.info("Capture session %s for context %s destroyed", self.session_id, self.context_id)
