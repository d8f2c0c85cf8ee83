"""
SessionRepository: persisted sessions, participants and transcribed segments.

save_session() replaces everything stored for one (context, session id) pair in one
transaction. Rows are keyed by session_key(), so equal session ids from different
contexts never collide. Audio paths are stored relative to RECORDING_ROOT when they
live under it, absolute otherwise.
"""
from __future__ import annotations

import logging
import os
from typing import Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callscribe.models import Segment, SessionInfo
from callscribe.schemas.sessions import (
    ParticipantOut,
    SegmentOut,
    SessionDetail,
    SessionListItem,
    SessionOut,
)
from callscribe.storage.orm import ParticipantORM, SegmentORM, SessionORM

logger = logging.getLogger(__name__)


def relative_to_root(path: str | None, root: str) -> str | None:
    """Path relative to root with forward slashes; unchanged (absolute) when outside root."""
    if not path:
        return None
    absolute = os.path.abspath(path)
    relative = os.path.relpath(absolute, os.path.abspath(root))
    if relative == os.curdir or relative.startswith(os.pardir):
        return absolute
    return relative.replace(os.sep, "/")


def session_key(context_id: str, session_id: str) -> str:
    """Stored session id: capture session ids are only unique within one context."""
    return f"{context_id}:{session_id}"


class SessionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], recording_root: str) -> None:
        self._session_factory = session_factory
        self._recording_root = recording_root

    async def save_session(
        self,
        session_id: str,
        info: SessionInfo,
        segments: Iterable[Segment],
        transcript: str | None = None,
        summary: str | None = None,
        audio_path: str | None = None,
    ) -> str:
        """Insert or replace one session with its participants and segments. Returns the stored id."""
        root = self._recording_root
        key = session_key(info.context_id, session_id)
        async with self._session_factory() as db, db.begin():
            await db.execute(delete(SegmentORM).where(SegmentORM.session_id == key))
            await db.execute(delete(ParticipantORM).where(ParticipantORM.session_id == key))
            await db.merge(
                SessionORM(
                    id=key,
                    session_id=session_id,
                    context_id=info.context_id,
                    context_name=info.context_name,
                    channel_id=info.channel_id,
                    channel_name=info.channel_name,
                    started_at=info.started_at,
                    ended_at=info.ended_at,
                    transcript=transcript,
                    summary=summary,
                    audio_path=relative_to_root(audio_path, root),
                )
            )
            for participant_id, display_name in info.participants.items():
                db.add(
                    ParticipantORM(
                        session_id=key,
                        participant_id=participant_id,
                        display_name=display_name,
                        joined_at=info.started_at,
                    )
                )
            for segment in segments:
                db.add(
                    SegmentORM(
                        id=segment.id,
                        session_id=key,
                        participant_id=segment.participant_id,
                        label=segment.label,
                        started_at=segment.started_at,
                        text=segment.text,
                        audio_path=relative_to_root(segment.audio_path, root),
                    )
                )
        logger.info("Saved session %s (%d participant(s))", key, len(info.participants))
        return key

    async def list_sessions(self) -> list[SessionListItem]:
        """All sessions, newest first, with participant counts."""
        count = func.count(ParticipantORM.participant_id).label("participant_count")
        stmt = (
            select(SessionORM, count)
            .outerjoin(ParticipantORM, ParticipantORM.session_id == SessionORM.id)
            .group_by(SessionORM.id)
            .order_by(SessionORM.started_at.desc())
        )
        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).all()
        return [
            SessionListItem(
                id=s.id,
                session_id=s.session_id,
                context_id=s.context_id,
                context_name=s.context_name,
                channel_name=s.channel_name,
                started_at=s.started_at,
                ended_at=s.ended_at,
                participant_count=n,
                has_audio=bool(s.audio_path),
            )
            for s, n in rows
        ]

    async def get_session_detail(self, session_id: str) -> SessionDetail | None:
        async with self._session_factory() as db:
            session = await db.get(SessionORM, session_id)
            if session is None:
                return None
            participants = (
                await db.execute(
                    select(ParticipantORM)
                    .where(ParticipantORM.session_id == session_id)
                    .order_by(func.lower(ParticipantORM.display_name))
                )
            ).scalars().all()
            segments = (
                await db.execute(
                    select(SegmentORM)
                    .where(SegmentORM.session_id == session_id)
                    .order_by(SegmentORM.started_at.asc())
                )
            ).scalars().all()
            return SessionDetail(
                session=SessionOut.model_validate(session),
                participants=[ParticipantOut.model_validate(p) for p in participants],
                segments=[SegmentOut.model_validate(s) for s in segments],
            )

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its rows. False when it did not exist."""
        async with self._session_factory() as db, db.begin():
            if await db.get(SessionORM, session_id) is None:
                return False
            await db.execute(delete(SegmentORM).where(SegmentORM.session_id == session_id))
            await db.execute(delete(ParticipantORM).where(ParticipantORM.session_id == session_id))
            result = await db.execute(delete(SessionORM).where(SessionORM.id == session_id))
        logger.info("Deleted session %s", session_id)
        return result.rowcount > 0
