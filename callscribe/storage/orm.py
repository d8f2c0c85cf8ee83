"""
SQLAlchemy ORM models for recorded sessions.

Tables: ``sessions``, ``session_participants`` and ``segments``. Deleting a session
removes its participants and segments. ``sessions.id`` is ``<context_id>:<session_id>``
because capture session ids are only unique within one context.
"""
from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKey, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Declarative base for callscribe ORM models."""


class SessionORM(Base):
    """ORM model for the ``sessions`` table."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    context_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    context_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    channel_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    ended_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    participants: Mapped[list[ParticipantORM]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True,
    )
    segments: Mapped[list[SegmentORM]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True,
    )


class ParticipantORM(Base):
    """ORM model for the ``session_participants`` table."""

    __tablename__ = "session_participants"

    session_id: Mapped[str] = mapped_column(
        String(200), ForeignKey("sessions.id", ondelete="CASCADE"), primary_key=True,
    )
    participant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    joined_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    session: Mapped[SessionORM] = relationship(back_populates="participants")


class SegmentORM(Base):
    """ORM model for the ``segments`` table."""

    __tablename__ = "segments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(200), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    participant_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    session: Mapped[SessionORM] = relationship(back_populates="segments")
