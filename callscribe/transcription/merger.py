"""
Transcript merger: order transcribed segments and render the session transcript.

Segments sort by start time (missing start = 0); ties keep their input order.
One line per segment: "<label>: <text>".
"""
from __future__ import annotations

from typing import Iterable

from callscribe.models import Segment


def order_segments(segments: Iterable[Segment]) -> list[Segment]:
    # sorted() is stable, so equal start times keep submission order
    return sorted(segments, key=lambda s: s.started_at or 0)


def format_line(segment: Segment) -> str:
    return f"{segment.label}: {segment.text}"


def build_transcript(segments: Iterable[Segment]) -> str:
    """Newline-joined "<label>: <text>" lines in speaking order."""
    return "\n".join(format_line(s) for s in order_segments(segments))
