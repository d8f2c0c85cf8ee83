"""
Core records shared by capture, segmentation, mixdown and persistence.

Timestamps are integer milliseconds since the epoch unless noted otherwise.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class Recording:
    """One continuous raw capture for one participant (one speech burst)."""

    participant_id: str
    file_path: str
    started_at: int


@dataclass(frozen=True)
class SpeechStartEvent:
    """A participant began speaking at `timestamp`."""

    participant_id: str
    timestamp: int


@dataclass(frozen=True)
class Manifest:
    """
    Immutable snapshot of a capture session.

    recordings: participant id -> recordings in capture order.
    labels: participant id -> display label frozen at first sight.
    """

    context_id: str
    session_id: str
    directory: str
    recordings: Mapping[str, tuple[Recording, ...]] = field(default_factory=dict)
    labels: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = {pid: tuple(items) for pid, items in self.recordings.items()}
        object.__setattr__(self, "recordings", MappingProxyType(frozen))
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    def label_for(self, participant_id: str) -> str:
        return self.labels.get(participant_id) or participant_id

    def all_recordings(self) -> list[Recording]:
        return [item for items in self.recordings.values() for item in items]

    def speech_timeline(self) -> list[SpeechStartEvent]:
        """Every recording start as a speech-start event, ordered by timestamp."""
        events = [SpeechStartEvent(r.participant_id, r.started_at) for r in self.all_recordings()]
        events.sort(key=lambda e: e.timestamp)
        return events

    @property
    def is_empty(self) -> bool:
        return not any(self.recordings.values())


@dataclass
class Segment:
    """One transcribed single-speaker slice."""

    participant_id: str
    label: str
    started_at: int | None
    text: str
    audio_path: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class SegmentError:
    """A recording or part that could not be transcribed; never fatal on its own."""

    participant_id: str
    label: str
    file_path: str
    reason: str
    started_at: int | None = None

    def as_dict(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "label": self.label,
            "file_path": self.file_path,
            "started_at": self.started_at,
            "reason": self.reason,
        }


@dataclass
class SessionInfo:
    """Descriptive metadata about a recorded call, collected by the front end."""

    context_id: str
    context_name: str | None = None
    channel_id: str | None = None
    channel_name: str | None = None
    started_at: int | None = None
    ended_at: int | None = None
    participants: dict[str, str] = field(default_factory=dict)  # participant id -> display name

    def participant_names(self) -> list[str]:
        return [name or pid for pid, name in self.participants.items() if name or pid]
