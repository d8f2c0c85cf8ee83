"""
Schemas for the recorded-session dashboard API.

Timestamps are unix milliseconds. `id` is the stored key `<context_id>:<session_id>`.
audio_path values are relative to RECORDING_ROOT; audio_url is set only when the path
is safe to serve under /recordings/.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SessionListItem(BaseModel):
    """One row of GET /api/sessions."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str | None = None
    context_id: str | None = None
    context_name: str | None = None
    channel_name: str | None = None
    started_at: int | None = None
    ended_at: int | None = None
    participant_count: int = Field(0, description="Distinct participants recorded in the session")
    has_audio: bool = False


class SessionListResponse(BaseModel):
    sessions: list[SessionListItem] = Field(default_factory=list)


class ParticipantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    participant_id: str
    display_name: str | None = None
    joined_at: int | None = None


class SegmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    participant_id: str | None = None
    label: str | None = None
    started_at: int | None = None
    text: str | None = None
    audio_path: str | None = None
    audio_url: str | None = None


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str | None = None
    context_id: str | None = None
    context_name: str | None = None
    channel_id: str | None = None
    channel_name: str | None = None
    started_at: int | None = None
    ended_at: int | None = None
    transcript: str | None = None
    summary: str | None = None
    audio_path: str | None = None
    audio_url: str | None = None


class SessionDetail(BaseModel):
    """Response for GET /api/sessions/{id}."""

    session: SessionOut
    participants: list[ParticipantOut] = Field(default_factory=list)
    segments: list[SegmentOut] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "ok"
    active_sessions: int = 0


class DeleteResponse(BaseModel):
    status: str = "deleted"
    id: str
