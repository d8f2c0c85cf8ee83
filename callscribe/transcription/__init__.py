"""Transcription: segment recordings, upload parts, merge the transcript."""
from .client import BatchHandled, BatchNotHandled, TranscriptionClient, TranscriptionError
from .engine import TranscriptionEngine, TranscriptionOutcome
from .merger import build_transcript, order_segments
from .segmenter import PartPlan, compute_split_points, plan_parts

__all__ = [
    "BatchHandled",
    "BatchNotHandled",
    "TranscriptionClient",
    "TranscriptionError",
    "TranscriptionEngine",
    "TranscriptionOutcome",
    "build_transcript",
    "order_segments",
    "PartPlan",
    "compute_split_points",
    "plan_parts",
]
