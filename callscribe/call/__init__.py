"""Call platform interface. Bridge implementations live in their own modules."""
from .base import CallHandle, DisconnectListener, LabelResolver, SpeechListener

__all__ = ["CallHandle", "DisconnectListener", "LabelResolver", "SpeechListener"]
