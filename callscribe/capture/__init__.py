"""Capture: per-participant raw recording tied to speech-start signals."""
from .manager import CaptureManager, CaptureOptions
from .session import CaptureSession
from .sink import RawCaptureSink

__all__ = ["CaptureManager", "CaptureOptions", "CaptureSession", "RawCaptureSink"]
