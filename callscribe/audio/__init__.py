"""Audio: frame accumulation, PCM/WAV codec, session mixdown."""
from .codec import (
    AlignmentError,
    CodecError,
    ContainerFormatError,
    ContainerInfo,
    EmptyAudioError,
    UnsupportedRateError,
    downmix_and_resample,
    encode_container,
    parse_container_header,
)
from .mixdown import mix_session_audio, mix_session_audio_async
from .receiver import FrameAccumulator

__all__ = [
    "AlignmentError",
    "CodecError",
    "ContainerFormatError",
    "ContainerInfo",
    "EmptyAudioError",
    "UnsupportedRateError",
    "downmix_and_resample",
    "encode_container",
    "parse_container_header",
    "mix_session_audio",
    "mix_session_audio_async",
    "FrameAccumulator",
]
