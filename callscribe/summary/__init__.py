"""Session summaries from an OpenAI-compatible chat server."""
from .client import SummaryClient, SummaryOutcome

__all__ = ["SummaryClient", "SummaryOutcome"]
