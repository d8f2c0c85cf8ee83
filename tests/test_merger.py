"""Tests for transcript ordering and rendering."""
from __future__ import annotations

from callscribe.models import Segment
from callscribe.transcription.merger import build_transcript, order_segments


def test_orders_by_start_time() -> None:
    segments = [Segment("b", "Bob", 300, "later"), Segment("a", "Alice", 100, "first")]
    assert build_transcript(segments) == "Alice: first\nBob: later"


def test_ties_keep_input_order() -> None:
    segments = [Segment("b", "Bob", 100, "one"), Segment("a", "Alice", 100, "two")]
    assert [s.text for s in order_segments(segments)] == ["one", "two"]


def test_missing_start_sorts_first() -> None:
    segments = [Segment("a", "Alice", 5, "timed"), Segment("b", "Bob", None, "untimed")]
    assert [s.text for s in order_segments(segments)] == ["untimed", "timed"]


def test_empty_text_kept() -> None:
    assert build_transcript([Segment("a", "Alice", 1, "")]) == "Alice: "
    assert build_transcript([]) == ""
