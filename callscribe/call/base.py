"""
CallHandle: abstract interface to one joined voice call.

Implementations adapt a call platform (e.g. WebSocketCallHandle for a relay bridge).
Audio from subscribe() is decoded PCM: interleaved stereo, signed 16-bit little-endian,
at the configured source rate, in chunks of any size.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Awaitable, Callable, Union

# (participant_id, timestamp_ms or None for "now")
SpeechListener = Callable[[str, Union[int, None]], None]
DisconnectListener = Callable[[str], None]
# participant_id -> display label (None/"" = unknown); may be sync or async
LabelResolver = Callable[[str], Union[str, None, Awaitable[Union[str, None]]]]


class CallHandle(ABC):
    """One live connection to a call. All methods run on the event loop."""

    @abstractmethod
    async def wait_ready(self) -> None:
        """Return once the connection can deliver audio. Callers bound this with a timeout."""
        ...

    @abstractmethod
    def add_speech_listener(self, listener: SpeechListener) -> Callable[[], None]:
        """Register for speech-start signals. Returns a function that unregisters it."""
        ...

    @abstractmethod
    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        """Register for abnormal disconnects (listener gets a reason). Returns an unregister function."""
        ...

    @abstractmethod
    def subscribe(self, participant_id: str) -> AsyncIterator[bytes]:
        """
        Audio for one participant. The iterator stays open while the call is live;
        the capture session closes it after trailing silence.
        """
        ...

    @abstractmethod
    async def leave(self) -> None:
        """Sever the connection. Must be safe to call more than once."""
        ...
