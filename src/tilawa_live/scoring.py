"""
Session-level scores and feedback text.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .alignment import EXTRA, MISSING, AlignmentEntry, is_correct_match
from .arabic_text import split_words
from .config import DEFAULT_SUBSTITUTION_THRESHOLD
from .mistakes import SUBSTITUTION, Mistake, clamp_score, count_by_type, round_half_up


EMPTY_TRANSCRIPTION_MESSAGE = "We could not capture any recitation in this session."

FEEDBACK_BANDS = (
    (90, "Beautiful recitation. Keep up the precise pacing and clarity."),
    (75, "Strong recitation overall. Review the highlighted words to polish them further."),
    (60, "Good effort. Focus on the flagged words to steady your recitation."),
)
REVISIT_MESSAGE = "Let's revisit the verse slowly and pay attention to each highlighted mistake."

ERROR_MESSAGES = {
    MISSING: "Expected word was not articulated in the recitation.",
    EXTRA: "An extra word or sound was detected beyond the written ayah.",
    SUBSTITUTION: "Pronunciation differed from the expected wording.",
}


@dataclass(frozen=True)
class ErrorDetail:
    """Per-mistake explanation shown to the reciter."""
    index: int
    type: str
    message: str
    word: Optional[str] = None
    correct: Optional[str] = None
    categories: Tuple[str, ...] = ()
    confidence: Optional[int] = None


@dataclass(frozen=True)
class SessionScores:
    """Integer percentages for one recitation."""
    accuracy: int
    timing_score: int
    fluency_score: int
    overall_score: int
    correct_words: int
    expected_words: int


@dataclass(frozen=True)
class MetricScores:
    """Per-dimension scores derived from mistakes alone."""
    accuracy: int
    completeness: int
    flow: int
    extras: int


def score_session(
    alignment: List[AlignmentEntry],
    mistakes: List[Mistake],
    expected_token_count: int,
    substitution_threshold: float = DEFAULT_SUBSTITUTION_THRESHOLD,
) -> SessionScores:
    """
    Convert alignment and mistakes into session scores.

    Args:
        alignment: Aligner output
        mistakes: Extracted mistakes
        expected_token_count: Number of words in the expected text
        substitution_threshold: Minimum similarity for a match to count as correct

    Returns:
        SessionScores with every value in [0, 100]
    """
    total = max(1, expected_token_count)
    correct = sum(1 for entry in alignment if is_correct_match(entry, substitution_threshold))
    counts = count_by_type(mistakes)

    accuracy = clamp_score(correct / total * 100)
    timing = clamp_score(accuracy - counts[MISSING] * 10)
    fluency = clamp_score(accuracy - counts[SUBSTITUTION] * 5 - counts[EXTRA] * 4)
    overall = clamp_score((accuracy + timing + fluency) / 3)

    return SessionScores(
        accuracy=accuracy,
        timing_score=timing,
        fluency_score=fluency,
        overall_score=overall,
        correct_words=correct,
        expected_words=total,
    )


def feedback_message(overall_score: int, transcription: str) -> str:
    if not (transcription or "").strip():
        return EMPTY_TRANSCRIPTION_MESSAGE
    for threshold, message in FEEDBACK_BANDS:
        if overall_score >= threshold:
            return message
    return REVISIT_MESSAGE


def build_error_details(mistakes: List[Mistake]) -> List[ErrorDetail]:
    return [
        ErrorDetail(
            index=mistake.index,
            type=mistake.type,
            message=ERROR_MESSAGES.get(mistake.type, ERROR_MESSAGES[SUBSTITUTION]),
            word=mistake.word,
            correct=mistake.correct,
            categories=mistake.categories,
            confidence=mistake.confidence,
        )
        for mistake in mistakes
    ]


def hasanat_points(accuracy: int, expected_token_count: int) -> int:
    """Reward estimate, at least 5 points per session."""
    total = max(1, expected_token_count)
    return max(5, round_half_up(accuracy / 100 * total * 4))


def calculate_recitation_metric_scores(mistakes: List[Mistake], expected_text: str) -> MetricScores:
    """
    Score accuracy, completeness, flow and extra-word discipline from mistakes.

    Args:
        mistakes: Mistakes for the recitation
        expected_text: Reference text used to size the recitation

    Returns:
        MetricScores
    """
    total = max(1, len(split_words(expected_text)))
    counts = count_by_type(mistakes)
    return MetricScores(
        accuracy=clamp_score((total - counts[SUBSTITUTION]) / total * 100),
        completeness=clamp_score((total - counts[MISSING]) / total * 100),
        flow=clamp_score(100 - counts[SUBSTITUTION] * 6 - counts[EXTRA] * 5),
        extras=clamp_score(100 - counts[EXTRA] * (100 / total)),
    )
