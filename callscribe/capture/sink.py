"""
RawCaptureSink: append-only raw PCM file for one speech burst of one participant.

- Bytes are written in arrival order; only whole frames reach disk.
- An incomplete trailing frame at close is dropped (logged), so the file length is
  always a multiple of the frame size.
- close() is idempotent and never raises for I/O errors (logged instead).
"""
from __future__ import annotations

import logging
import os
from typing import BinaryIO, Optional

from callscribe.audio.receiver import FrameAccumulator

logger = logging.getLogger(__name__)


class RawCaptureSink:
    """One open file per burst. open -> append... -> close once."""

    def __init__(self, path: str, frame_bytes: int) -> None:
        self._path = path
        self._accumulator = FrameAccumulator(frame_bytes)
        self._file: Optional[BinaryIO] = None
        self._bytes_written = 0
        self._closed = False

    def open(self) -> None:
        """Create parent directories and the file. Raises OSError on failure."""
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        self._file = open(self._path, "wb")

    def append(self, data: bytes) -> None:
        if self._closed or self._file is None:
            return
        if not data:
            logger.debug("Capture: dropped empty chunk for %s", self._path)
            return
        frames = self._accumulator.feed(data)
        if frames:
            self._file.write(frames)
            self._bytes_written += len(frames)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        dropped = self._accumulator.discard()
        if dropped:
            logger.warning("Capture: dropped %d trailing bytes (partial frame) for %s", dropped, self._path)
        if self._file is None:
            return
        try:
            self._file.flush()
            self._file.close()
        except OSError as e:
            logger.warning("Capture close failed for %s: %s", self._path, e)
        finally:
            self._file = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    @property
    def closed(self) -> bool:
        return self._closed
