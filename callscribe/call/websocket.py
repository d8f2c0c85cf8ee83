"""
WebSocket call bridge: a relay process streams one live call to us over a WebSocket.

Messages from the relay:
- text (JSON):
    {"type": "start", "context_id", "context_name"?, "channel_id"?, "channel_name"?,
     "participants"?: {participant_id: display_name}}
    {"type": "participant", "participant_id", "display_name"?}
    {"type": "speaking", "participant_id", "timestamp"?}   (timestamp = unix ms)
    {"type": "stop"}
- binary: participant_id (UTF-8) + b"\\x00" + PCM (stereo s16le at the source rate).

Server replies with JSON: {"type": "status" | "stopped" | "error", ...}.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from fastapi import WebSocket, WebSocketDisconnect

from callscribe.call.base import CallHandle, DisconnectListener, SpeechListener
from callscribe.controller import RecordingController, RecordingError
from callscribe.models import SessionInfo

logger = logging.getLogger(__name__)

PARTICIPANT_SEPARATOR = b"\x00"
# Chunks buffered for a participant between a speech signal and the capture subscribing
PENDING_QUEUE_SIZE = 500
SUBSCRIBER_QUEUE_SIZE = 2000


class AudioSubscription:
    """Async iterator over one participant's audio. Ends when the call is left."""

    def __init__(self, handle: "WebSocketCallHandle", participant_id: str, queue: asyncio.Queue) -> None:
        self._handle = handle
        self._participant_id = participant_id
        self._queue = queue
        self._closed = False

    def __aiter__(self) -> "AudioSubscription":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        chunk = await self._queue.get()
        if chunk is None:
            self._closed = True
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self._handle._unsubscribe(self._participant_id, self._queue)


class WebSocketCallHandle(CallHandle):
    """CallHandle fed by a relay connection. The bridge pushes events in; capture pulls audio out."""

    def __init__(self) -> None:
        self._ready = asyncio.Event()
        self._speech_listeners: list[SpeechListener] = []
        self._disconnect_listeners: list[DisconnectListener] = []
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self._pending: dict[str, asyncio.Queue] = {}
        self._left = False

    # --- CallHandle ---

    async def wait_ready(self) -> None:
        await self._ready.wait()

    def add_speech_listener(self, listener: SpeechListener) -> Callable[[], None]:
        self._speech_listeners.append(listener)
        return lambda: self._remove(self._speech_listeners, listener)

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        self._disconnect_listeners.append(listener)
        return lambda: self._remove(self._disconnect_listeners, listener)

    def subscribe(self, participant_id: str) -> AudioSubscription:
        queue = self._pending.pop(participant_id, None)
        if queue is None:
            queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        if self._left:
            self._offer(queue, None, force=True)
        self._subscribers.setdefault(participant_id, []).append(queue)
        return AudioSubscription(self, participant_id, queue)

    async def leave(self) -> None:
        if self._left:
            return
        self._left = True
        for queues in self._subscribers.values():
            for queue in queues:
                self._offer(queue, None, force=True)
        self._pending.clear()
        logger.info("Left call (%d participant stream(s) closed)", sum(len(q) for q in self._subscribers.values()))

    # --- fed by the bridge ---

    def mark_ready(self) -> None:
        self._ready.set()

    @property
    def left(self) -> bool:
        return self._left

    def emit_speaking(self, participant_id: str, timestamp: int | None = None) -> None:
        if self._left:
            return
        if not self._subscribers.get(participant_id) and participant_id not in self._pending:
            self._pending[participant_id] = asyncio.Queue(maxsize=PENDING_QUEUE_SIZE)
        for listener in list(self._speech_listeners):
            try:
                listener(participant_id, timestamp)
            except Exception:
                logger.exception("Speech listener failed for %s", participant_id)

    def push_audio(self, participant_id: str, pcm: bytes) -> None:
        if self._left or not pcm:
            return
        queues = self._subscribers.get(participant_id)
        if queues:
            for queue in queues:
                self._offer(queue, pcm)
        elif participant_id in self._pending:
            self._offer(self._pending[participant_id], pcm)

    def emit_disconnect(self, reason: str) -> None:
        """Report an abnormal disconnect to listeners (each at most once per handle)."""
        listeners, self._disconnect_listeners = self._disconnect_listeners, []
        for listener in listeners:
            try:
                listener(reason)
            except Exception:
                logger.exception("Disconnect listener failed")

    # --- internals ---

    @staticmethod
    def _remove(listeners: list, listener: Any) -> None:
        try:
            listeners.remove(listener)
        except ValueError:
            pass

    @staticmethod
    def _offer(queue: asyncio.Queue, item: bytes | None, force: bool = False) -> None:
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            if not force:
                logger.warning("Audio queue full; dropping %d byte chunk", len(item or b""))
                return
            # End-of-stream marker must get through
            queue.get_nowait()
            queue.put_nowait(item)

    def _unsubscribe(self, participant_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(participant_id)
        if not queues:
            return
        self._remove(queues, queue)
        if not queues:
            del self._subscribers[participant_id]


def split_audio_frame(data: bytes) -> tuple[str, bytes]:
    """b"<participant_id>\\x00<pcm>" -> (participant_id, pcm)."""
    participant, sep, pcm = data.partition(PARTICIPANT_SEPARATOR)
    if not sep or not participant:
        raise ValueError("Binary message must be <participant_id>\\0<pcm>")
    return participant.decode("utf-8"), pcm


class CallBridge:
    """One relay WebSocket = one call. Drives a WebSocketCallHandle and the RecordingController."""

    def __init__(self, websocket: WebSocket, controller: RecordingController) -> None:
        self._ws = websocket
        self._controller = controller
        self._handle = WebSocketCallHandle()
        self._context_id: str | None = None
        self._info: SessionInfo | None = None
        self._closed = False

    @property
    def handle(self) -> WebSocketCallHandle:
        return self._handle

    async def _send(self, payload: dict) -> None:
        if self._closed:
            return
        try:
            await self._ws.send_text(json.dumps(payload))
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("Relay gone; dropping reply: %s", e)
            self._closed = True

    async def run(self) -> None:
        """Receive loop. A connection that drops mid-recording is reported as a disconnect."""
        try:
            while not self._closed:
                try:
                    msg = await self._ws.receive()
                except (WebSocketDisconnect, RuntimeError):
                    break
                if msg.get("type") == "websocket.disconnect":
                    break
                if msg.get("bytes") is not None:
                    self._on_audio(msg["bytes"])
                elif msg.get("text") is not None:
                    done = await self._on_text(msg["text"])
                    if done:
                        break
        finally:
            self._closed = True
            if self._context_id is not None and not self._handle.left:
                self._handle.emit_disconnect("relay connection closed")

    def _on_audio(self, data: bytes) -> None:
        try:
            participant_id, pcm = split_audio_frame(data)
        except (ValueError, UnicodeDecodeError) as e:
            logger.debug("Ignoring malformed audio message: %s", e)
            return
        self._handle.push_audio(participant_id, pcm)

    async def _on_text(self, text: str) -> bool:
        """Handle one control message. Returns True when the bridge should close."""
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            await self._send({"type": "error", "message": "invalid JSON"})
            return False
        if not isinstance(message, dict):
            await self._send({"type": "error", "message": "expected a JSON object"})
            return False
        kind = message.get("type")
        if kind == "start":
            await self._on_start(message)
        elif kind == "participant":
            self._on_participant(message)
        elif kind == "speaking":
            participant_id = message.get("participant_id")
            if isinstance(participant_id, str) and participant_id:
                timestamp = message.get("timestamp")
                self._handle.emit_speaking(participant_id, int(timestamp) if isinstance(timestamp, (int, float)) else None)
        elif kind == "stop":
            await self._on_stop()
            return True
        else:
            await self._send({"type": "error", "message": f"unknown message type: {kind!r}"})
        return False

    async def _on_start(self, message: dict) -> None:
        context_id = message.get("context_id")
        if not isinstance(context_id, str) or not context_id:
            await self._send({"type": "error", "message": "start requires context_id"})
            return
        if self._context_id is not None:
            await self._send({"type": "error", "message": "already recording on this connection"})
            return
        participants = message.get("participants") or {}
        info = SessionInfo(
            context_id=context_id,
            context_name=message.get("context_name"),
            channel_id=message.get("channel_id"),
            channel_name=message.get("channel_name"),
            participants={str(k): str(v) for k, v in participants.items()} if isinstance(participants, dict) else {},
        )
        self._handle.mark_ready()
        try:
            session = await self._controller.join(self._handle, context_id, info)
        except RecordingError as e:
            await self._send({"type": "error", "message": str(e)})
            return
        self._context_id = context_id
        self._info = info
        channel = info.channel_name or context_id
        await self._send(
            {
                "type": "status",
                "event": "recording",
                "session_id": session.session_id,
                "message": f"Joined {channel} and started recording.",
            }
        )

    def _on_participant(self, message: dict) -> None:
        participant_id = message.get("participant_id")
        if self._info is None or not isinstance(participant_id, str) or not participant_id:
            return
        display_name = message.get("display_name")
        self._info.participants[participant_id] = str(display_name) if display_name else participant_id

    async def _on_stop(self) -> None:
        if self._context_id is None:
            await self._send({"type": "stopped", "messages": ["Not recording right now."]})
            return
        report = await self._controller.stop(self._context_id)
        if report is None:
            await self._send({"type": "stopped", "messages": ["Not recording right now."]})
            return
        await self._send({"type": "stopped", **report.as_dict()})
