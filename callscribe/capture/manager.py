"""
CaptureManager: registry of at most one active CaptureSession per context.

start() is idempotent; stop() tears the session down completely (including the manifest
snapshot) before the registry entry is removed. Both are serialized per context, so a start
that races an in-flight stop waits for the teardown to finish.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from callscribe.call.base import CallHandle, LabelResolver
from callscribe.capture.session import CaptureSession
from callscribe.config import Settings, get_settings
from callscribe.models import Manifest

logger = logging.getLogger(__name__)


@dataclass
class CaptureOptions:
    """Per-start options."""

    label_resolver: LabelResolver | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CaptureManager:
    """Owns the context id -> session registry. One instance per process, passed explicitly."""

    def __init__(
        self,
        root_dir: str | None = None,
        settings: Settings | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._root_dir = root_dir or self._settings.RECORDING_ROOT
        self._clock = clock
        self._sessions: dict[str, CaptureSession] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _context_lock(self, context_id: str) -> AsyncIterator[None]:
        """Serialize start/stop for one context. The lock is dropped once nobody holds or awaits it."""
        lock = self._locks.get(context_id)
        if lock is None:
            lock = self._locks[context_id] = asyncio.Lock()
        self._lock_users[context_id] = self._lock_users.get(context_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[context_id] - 1
            if remaining:
                self._lock_users[context_id] = remaining
            else:
                del self._lock_users[context_id]
                del self._locks[context_id]

    async def start(
        self,
        call: CallHandle,
        context_id: str,
        options: CaptureOptions | None = None,
    ) -> CaptureSession:
        """Return the active session for context_id, creating one if there is none."""
        options = options or CaptureOptions()
        async with self._context_lock(context_id):
            existing = self._sessions.get(context_id)
            if existing is not None:
                return existing
            session = await CaptureSession.open(
                call,
                context_id,
                options.label_resolver,
                root_dir=self._root_dir,
                settings=self._settings,
                clock=self._clock,
            )
            self._sessions[context_id] = session
            self._metadata[context_id] = dict(options.metadata)
            return session

    async def stop(self, context_id: str) -> Manifest | None:
        """Destroy the active session and return its manifest; None if nothing was active."""
        async with self._context_lock(context_id):
            session = self._sessions.get(context_id)
            if session is None:
                return None
            try:
                await session.destroy()
                manifest = session.get_manifest()
            finally:
                del self._sessions[context_id]
                self._metadata.pop(context_id, None)
            logger.info(
                "Capture stopped for context %s: %d participant(s), %d recording(s)",
                context_id,
                len(manifest.recordings),
                len(manifest.all_recordings()),
            )
            return manifest

    def get(self, context_id: str) -> CaptureSession | None:
        return self._sessions.get(context_id)

    def metadata(self, context_id: str) -> dict[str, Any]:
        return dict(self._metadata.get(context_id, {}))

    def active_contexts(self) -> list[str]:
        return list(self._sessions)

    async def stop_all(self) -> dict[str, Manifest]:
        """Stop every active session (shutdown)."""
        manifests: dict[str, Manifest] = {}
        for context_id in list(self._sessions):
            manifest = await self.stop(context_id)
            if manifest is not None:
                manifests[context_id] = manifest
        return manifests
