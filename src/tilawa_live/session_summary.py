"""
Build the final summary for one recitation attempt.

``create_live_session_summary`` is pure: identical inputs always give an
identical summary, which makes it safe to call from request handlers, tests
and the streaming coordinator alike.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .alignment import AlignmentContext, align_words
from .arabic_text import count_arabic_letters, split_words, word_spans
from .config import clamp_substitution_threshold
from .dialects import DialectResolution, DialectResolver
from .mistakes import (
    AlignmentConfidence,
    Mistake,
    MistakeCategorySummary,
    build_alignment_confidence,
    build_mistake_breakdown,
    clamp_score,
    extract_mistakes,
    overall_confidence,
)
from .phonetics import PhoneticModelRegistry
from .scoring import ErrorDetail, build_error_details, feedback_message, hasanat_points, score_session


logger = logging.getLogger(__name__)

ENGINES = ("tarteel", "nvidia", "on-device")
DEFAULT_ENGINE = "on-device"
DIALECT_STACK_ITEM = "Dialect-adaptive phonetic alignment"

ENGINE_DESCRIPTIONS = {
    "tarteel": "Tarteel transcription with simplified word-level alignment.",
    "nvidia": "GPU-accelerated transcription with lightweight word alignment.",
    "on-device": "Client-side speech recognition paired with lightweight word alignment.",
}


@dataclass(frozen=True)
class AnalysisProfile:
    """Which engine produced the transcription and how it was processed."""
    engine: str
    stack: Tuple[str, ...]
    description: str
    latency_ms: Optional[int] = None


@dataclass(frozen=True)
class FeedbackScores:
    overall_score: int
    accuracy: int
    timing_score: int
    fluency_score: int
    feedback: str
    errors: Tuple[ErrorDetail, ...]


@dataclass(frozen=True)
class MistakeConfidence:
    index: int
    type: str
    category: str
    confidence: int


@dataclass(frozen=True)
class ConfidenceBreakdown:
    overall: int
    mistakes: Tuple[MistakeConfidence, ...]
    alignment: Tuple[AlignmentConfidence, ...]


@dataclass(frozen=True)
class DialectInsight:
    code: str
    label: str
    description: str
    source: str
    weight: float
    detection_confidence: int
    reasons: Tuple[str, ...]


@dataclass(frozen=True)
class WordTiming:
    word: str
    start: int
    end: int


@dataclass(frozen=True)
class LiveSessionSummary:
    """Final, immutable result of one recitation attempt."""
    transcription: str
    expected_text: str
    mistakes: Tuple[Mistake, ...]
    mistake_breakdown: Tuple[MistakeCategorySummary, ...]
    analysis: AnalysisProfile
    feedback: FeedbackScores
    confidence: ConfidenceBreakdown
    dialect: DialectInsight
    hasanat_points: int
    arabic_letter_count: int
    words: Tuple[WordTiming, ...] = ()
    duration: Optional[float] = None
    ayah_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_analysis_profile(analysis: Optional[Mapping[str, Any]], dialect_label: str) -> AnalysisProfile:
    """
    Fill in engine defaults and mention the dialect model.

    Args:
        analysis: Optional overrides with keys engine, stack, description, latency_ms
        dialect_label: Human label of the dialect in use

    Returns:
        AnalysisProfile
    """
    analysis = dict(analysis or {})
    engine = analysis.get("engine") or DEFAULT_ENGINE
    if engine not in ENGINES:
        engine = DEFAULT_ENGINE

    stack = list(analysis.get("stack") or [])
    if not stack:
        first = "Tarteel speech recognition" if engine == "tarteel" else "Browser speech recognition"
        stack = [first, "Word-level alignment", "Recitation feedback heuristics"]
    if DIALECT_STACK_ITEM not in stack:
        stack.append(DIALECT_STACK_ITEM)

    description = analysis.get("description") or ENGINE_DESCRIPTIONS[engine]
    if dialect_label not in description:
        description = f"{description} Dialect model: {dialect_label}."

    latency = analysis.get("latency_ms")
    return AnalysisProfile(
        engine=engine,
        stack=tuple(stack),
        description=description,
        latency_ms=int(latency) if latency is not None else None,
    )


def _dialect_insight(resolution: DialectResolution) -> DialectInsight:
    model = resolution.model
    return DialectInsight(
        code=model.code,
        label=model.label,
        description=model.description,
        source=resolution.source,
        weight=model.weight,
        detection_confidence=clamp_score(resolution.confidence * 100),
        reasons=tuple(resolution.reasons),
    )


def create_live_session_summary(
    transcription: str,
    expected_text: str,
    duration_seconds: Optional[float] = None,
    ayah_id: Optional[str] = None,
    analysis: Optional[Mapping[str, Any]] = None,
    dialect: Optional[str] = None,
    locale_hint: Optional[str] = None,
    substitution_threshold: Optional[float] = None,
    registry: Optional[PhoneticModelRegistry] = None,
) -> LiveSessionSummary:
    """
    Align a transcription against the expected text and score it.

    Args:
        transcription: Detected recitation text
        expected_text: Reference ayah text
        duration_seconds: Recording duration, if known
        ayah_id: Identifier carried through to the summary
        analysis: Engine metadata overrides (engine, stack, description, latency_ms)
        dialect: Dialect code or "auto"
        locale_hint: Locale tag used when dialect is "auto"
        substitution_threshold: Similarity below which a match counts as a substitution
        registry: Phonetic model registry to draw models from

    Returns:
        LiveSessionSummary
    """
    transcription = (transcription or "").strip()
    expected_text = (expected_text or "").strip()

    resolution = DialectResolver(registry).resolve(
        dialect or "auto",
        expected_text=expected_text,
        transcript=transcription,
        locale_hint=locale_hint,
    )
    context = AlignmentContext(
        model=resolution.model,
        substitution_threshold=clamp_substitution_threshold(substitution_threshold),
    )

    alignment = align_words(expected_text, transcription, context)
    mistakes = extract_mistakes(alignment, context)
    expected_count = len(split_words(expected_text))
    scores = score_session(alignment, mistakes, expected_count, context.substitution_threshold)

    alignment_confidence = build_alignment_confidence(alignment, context)
    confidence = ConfidenceBreakdown(
        overall=overall_confidence(alignment_confidence, mistakes),
        mistakes=tuple(
            MistakeConfidence(
                index=mistake.index,
                type=mistake.type,
                category=mistake.category,
                confidence=mistake.confidence,
            )
            for mistake in mistakes
        ),
        alignment=tuple(alignment_confidence),
    )

    feedback = FeedbackScores(
        overall_score=scores.overall_score,
        accuracy=scores.accuracy,
        timing_score=scores.timing_score,
        fluency_score=scores.fluency_score,
        feedback=feedback_message(scores.overall_score, transcription),
        errors=tuple(build_error_details(mistakes)),
    )

    words = tuple(WordTiming(word=word, start=start, end=end) for word, start, end in word_spans(transcription))

    logger.debug(
        f"Session summary: accuracy={scores.accuracy} mistakes={len(mistakes)} dialect={resolution.model.code}"
    )

    return LiveSessionSummary(
        transcription=transcription,
        expected_text=expected_text,
        mistakes=tuple(mistakes),
        mistake_breakdown=tuple(build_mistake_breakdown(mistakes)),
        analysis=build_analysis_profile(analysis, resolution.model.label),
        feedback=feedback,
        confidence=confidence,
        dialect=_dialect_insight(resolution),
        hasanat_points=hasanat_points(scores.accuracy, expected_count),
        arabic_letter_count=count_arabic_letters(expected_text or transcription),
        words=words,
        duration=duration_seconds,
        ayah_id=ayah_id,
    )
