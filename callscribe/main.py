"""
FastAPI app: call-bridge WebSocket plus the recorded-session dashboard API.

- WS   /ws/calls              relay streams one call (see callscribe.call.websocket)
- GET  /api/health
- GET  /api/sessions          newest first, with participant counts
- GET  /api/sessions/{id}     session, participants, segments (+ audio URLs)
- DELETE /api/sessions/{id}
- GET  /recordings/...        raw, segment and mixdown audio under RECORDING_ROOT
"""
from __future__ import annotations

import logging
import os
import posixpath
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from callscribe.call.websocket import CallBridge
from callscribe.capture.manager import CaptureManager
from callscribe.config import Settings, configure_logging, get_settings
from callscribe.controller import RecordingController
from callscribe.schemas.sessions import (
    DeleteResponse,
    HealthResponse,
    SessionDetail,
    SessionListResponse,
)
from callscribe.storage.db import build_engine, build_session_factory, init_models
from callscribe.storage.repository import SessionRepository
from callscribe.summary.client import SummaryClient
from callscribe.transcription.engine import TranscriptionEngine

logger = logging.getLogger(__name__)

RECORDINGS_PREFIX = "/recordings"


def public_audio_path(relative_path: str | None) -> str | None:
    """Normalized forward-slash path, or None when it is absolute or escapes the root."""
    if not relative_path:
        return None
    candidate = relative_path.replace("\\", "/")
    if candidate.startswith("/") or os.path.isabs(relative_path):
        return None
    normalized = posixpath.normpath(candidate)
    if normalized == "." or normalized.startswith(".."):
        return None
    return normalized


def audio_url(relative_path: str | None) -> str | None:
    public = public_audio_path(relative_path)
    return f"{RECORDINGS_PREFIX}/{public}" if public else None


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        os.makedirs(settings.RECORDING_ROOT, exist_ok=True)
        engine = build_engine(settings.DATABASE_URL)
        await init_models(engine)
        repository = SessionRepository(build_session_factory(engine), settings.RECORDING_ROOT)
        controller = RecordingController(
            manager=CaptureManager(settings=settings),
            engine=TranscriptionEngine(settings=settings),
            summarizer=SummaryClient(settings=settings),
            repository=repository,
            settings=settings,
        )
        app.state.settings = settings
        app.state.repository = repository
        app.state.controller = controller
        logger.info("callscribe ready: recordings in %s", os.path.abspath(settings.RECORDING_ROOT))
        yield
        await controller.stop_all()
        await engine.dispose()

    app = FastAPI(
        title="callscribe",
        description="Per-speaker call recording, segmentation and transcription",
        lifespan=lifespan,
    )

    @app.websocket("/ws/calls")
    async def websocket_calls(websocket: WebSocket) -> None:
        """Relay sends JSON control messages and <participant_id>\\0<pcm> binary frames."""
        await websocket.accept()
        bridge = CallBridge(websocket, websocket.app.state.controller)
        try:
            await bridge.run()
        except WebSocketDisconnect:
            logger.debug("Relay disconnected")

    @app.get("/api/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        controller: RecordingController = request.app.state.controller
        return HealthResponse(status="ok", active_sessions=len(controller.active_contexts()))

    @app.get("/api/sessions", response_model=SessionListResponse)
    async def list_sessions(request: Request) -> SessionListResponse:
        repository: SessionRepository = request.app.state.repository
        try:
            sessions = await repository.list_sessions()
        except SQLAlchemyError:
            logger.exception("Failed to list sessions")
            raise HTTPException(status_code=500, detail="Failed to list sessions")
        return SessionListResponse(sessions=sessions)

    @app.get("/api/sessions/{session_id}", response_model=SessionDetail)
    async def get_session(session_id: str, request: Request) -> SessionDetail:
        repository: SessionRepository = request.app.state.repository
        try:
            detail = await repository.get_session_detail(session_id)
        except SQLAlchemyError:
            logger.exception("Failed to get session detail for %s", session_id)
            raise HTTPException(status_code=500, detail="Failed to get session detail")
        if detail is None:
            raise HTTPException(status_code=404, detail="Session not found")
        detail.session.audio_url = audio_url(detail.session.audio_path)
        for segment in detail.segments:
            segment.audio_url = audio_url(segment.audio_path)
        return detail

    @app.delete("/api/sessions/{session_id}", response_model=DeleteResponse)
    async def delete_session(session_id: str, request: Request) -> DeleteResponse:
        repository: SessionRepository = request.app.state.repository
        try:
            deleted = await repository.delete_session(session_id)
        except SQLAlchemyError:
            logger.exception("Failed to delete session %s", session_id)
            raise HTTPException(status_code=500, detail="Failed to delete session")
        if not deleted:
            raise HTTPException(status_code=404, detail="Session not found")
        return DeleteResponse(id=session_id)

    app.mount(
        RECORDINGS_PREFIX,
        StaticFiles(directory=settings.RECORDING_ROOT, check_dir=False),
        name="recordings",
    )
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
