"""
Exception types raised by the live recitation system.
"""

from typing import Any, Optional


TRANSCRIPTION_UNAVAILABLE_MESSAGE = (
    "AI transcription isn't configured on this server yet. "
    "Add a TARTEEL_API_KEY to enable live recitation analysis."
)


class TilawaError(Exception):
    """Base class for all package errors."""


class MicrophonePermissionError(TilawaError):
    """Microphone access was denied by the operating system or the device."""


class CaptureUnavailableError(TilawaError):
    """No usable capture backend or input device exists."""


class AudioProcessingError(TilawaError):
    """Encoding, decoding or resampling audio failed."""


class TranscriptionError(TilawaError):
    """A transcription request failed. Callers may retry with the next chunk."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload


class TarteelTranscriptionError(TranscriptionError):
    """The Tarteel service rejected or failed a request."""


class TranscriptionUnavailableError(TranscriptionError):
    """The transcription backend is not configured. Retrying will not help."""

    def __init__(self, message: str = TRANSCRIPTION_UNAVAILABLE_MESSAGE, payload: Any = None):
        super().__init__(message, status=503, payload=payload)


class QuranTextError(TilawaError):
    """Fetching reference ayah text failed."""
