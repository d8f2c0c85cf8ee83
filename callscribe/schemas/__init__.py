"""Pydantic schemas for API responses."""
from callscribe.schemas.sessions import (
    DeleteResponse,
    HealthResponse,
    ParticipantOut,
    SegmentOut,
    SessionDetail,
    SessionListItem,
    SessionListResponse,
    SessionOut,
)

__all__ = [
    "DeleteResponse",
    "HealthResponse",
    "ParticipantOut",
    "SegmentOut",
    "SessionDetail",
    "SessionListItem",
    "SessionListResponse",
    "SessionOut",
]
