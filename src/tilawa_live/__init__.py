"""
Live Qur'an recitation analysis: dialect-aware word alignment, scoring and
streaming capture.
"""

from .alignment import AlignmentContext, AlignmentEntry, align_words, tokenize
from .api_clients import (
    CallableTranscriber,
    RemoteTranscriptionClient,
    TarteelTranscriptionClient,
    Transcriber,
)
from .config import LiveRecitationConfig, Settings
from .dialects import DialectResolution, DialectResolver, resolve_dialect
from .mistakes import Mistake, extract_mistakes
from .phonetics import PhoneticModel, PhoneticModelRegistry, compare_words, list_dialects
from .scoring import calculate_recitation_metric_scores, score_session
from .session_summary import LiveSessionSummary, create_live_session_summary
from .streaming import LiveRecitationSession

__version__ = "0.1.0"

__all__ = [
    "AlignmentContext",
    "AlignmentEntry",
    "CallableTranscriber",
    "DialectResolution",
    "DialectResolver",
    "LiveRecitationConfig",
    "LiveRecitationSession",
    "LiveSessionSummary",
    "Mistake",
    "PhoneticModel",
    "PhoneticModelRegistry",
    "RemoteTranscriptionClient",
    "Settings",
    "TarteelTranscriptionClient",
    "Transcriber",
    "align_words",
    "calculate_recitation_metric_scores",
    "compare_words",
    "create_live_session_summary",
    "extract_mistakes",
    "list_dialects",
    "resolve_dialect",
    "score_session",
    "tokenize",
]
