"""
FrameAccumulator: turns arbitrarily sized PCM chunks into whole frames.

The call platform delivers decoded audio in chunks of any size; recordings on disk must
always be a whole number of frames. Any remainder is kept for the next chunk.
"""
from __future__ import annotations


class FrameAccumulator:
    """Buffers incoming PCM bytes and releases only complete frames."""

    def __init__(self, frame_bytes: int) -> None:
        if frame_bytes <= 0:
            raise ValueError("frame_bytes must be positive")
        self._frame_bytes = frame_bytes
        self._buffer = bytearray()

    def feed(self, data: bytes) -> bytes:
        """Append a chunk and return every complete frame now available (possibly b"")."""
        self._buffer.extend(data)
        usable = len(self._buffer) - (len(self._buffer) % self._frame_bytes)
        if usable == 0:
            return b""
        out = bytes(self._buffer[:usable])
        del self._buffer[:usable]
        return out

    def remaining_bytes(self) -> int:
        """Bytes left in buffer (incomplete frame)."""
        return len(self._buffer)

    def discard(self) -> int:
        """Drop the incomplete tail, e.g. when the stream closes. Returns bytes dropped."""
        dropped = len(self._buffer)
        self._buffer.clear()
        return dropped

    @property
    def frame_bytes(self) -> int:
        return self._frame_bytes
