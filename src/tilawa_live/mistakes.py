"""
Mistake extraction and confidence scoring.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .alignment import EXTRA, MATCH, MISSING, AlignmentContext, AlignmentEntry


logger = logging.getLogger(__name__)

SUBSTITUTION = "substitution"

MISSED_WORD = "missed_word"
INCORRECT_WORD = "incorrect_word"
EXTRA_WORD = "extra_word"

MISTAKE_CATEGORY_ORDER = (MISSED_WORD, INCORRECT_WORD, EXTRA_WORD)

MISTAKE_CATEGORY_META: Dict[str, Dict[str, str]] = {
    MISSED_WORD: {
        "label": "Missed words",
        "description": "Expected ayah tokens that were not recited during the session.",
    },
    INCORRECT_WORD: {
        "label": "Incorrect words",
        "description": "Spoken tokens that differ from the Mushaf text.",
    },
    EXTRA_WORD: {
        "label": "Extra words",
        "description": "Words or sounds added beyond the written ayah.",
    },
}

CATEGORY_BY_TYPE = {
    MISSING: MISSED_WORD,
    SUBSTITUTION: INCORRECT_WORD,
    EXTRA: EXTRA_WORD,
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    """Round to an integer percentage in [0, 100]."""
    if value is None or not math.isfinite(value):
        return 0
    return max(0, min(100, round_half_up(value)))


@dataclass(frozen=True)
class SimilarityBreakdown:
    combined: float
    text: float
    phonetic: float


@dataclass(frozen=True)
class Mistake:
    """A flagged deviation from the expected text."""
    index: int
    type: str
    confidence: int
    categories: Tuple[str, ...]
    word: Optional[str] = None
    correct: Optional[str] = None
    similarity: Optional[float] = None
    similarity_breakdown: Optional[SimilarityBreakdown] = None

    @property
    def category(self) -> str:
        return self.categories[0]


@dataclass(frozen=True)
class AlignmentConfidence:
    """Confidence attached to one alignment entry."""
    index: int
    type: str
    confidence: int
    expected: Optional[str] = None
    detected: Optional[str] = None


def substitution_confidence(similarity: float, phonetic_similarity: float, weight: float) -> int:
    value = 55 + (1 - similarity) * 45 - phonetic_similarity * 35 * (1 - weight * 0.5) + weight * 10
    return clamp_score(value)


def missing_confidence(weight: float) -> int:
    return clamp_score(70 + weight * 20)


def extra_confidence(weight: float) -> int:
    return clamp_score(68 + (1 - weight) * 15)


def is_substitution(entry: AlignmentEntry, threshold: float) -> bool:
    return entry.type == MATCH and (entry.similarity or 0.0) < threshold


def extract_mistakes(alignment: List[AlignmentEntry], context: AlignmentContext) -> List[Mistake]:
    """
    Classify alignment entries into mistakes.

    ``index`` is the position in the expected sequence. Extra words carry the
    index of the next expected word, since they do not consume one.

    Args:
        alignment: Output of the aligner
        context: Phonetic model and substitution threshold

    Returns:
        Mistakes in reading order
    """
    weight = context.model.weight
    threshold = context.substitution_threshold
    mistakes: List[Mistake] = []
    expected_index = 0

    for entry in alignment:
        if entry.type == MATCH:
            if is_substitution(entry, threshold):
                similarity = entry.similarity or 0.0
                phonetic = entry.phonetic_similarity or 0.0
                mistakes.append(Mistake(
                    index=expected_index,
                    type=SUBSTITUTION,
                    word=entry.detected,
                    correct=entry.expected,
                    similarity=similarity,
                    similarity_breakdown=SimilarityBreakdown(
                        combined=similarity,
                        text=entry.text_similarity or 0.0,
                        phonetic=phonetic,
                    ),
                    confidence=substitution_confidence(similarity, phonetic, weight),
                    categories=(INCORRECT_WORD,),
                ))
            expected_index += 1
        elif entry.type == MISSING:
            mistakes.append(Mistake(
                index=expected_index,
                type=MISSING,
                correct=entry.expected,
                confidence=missing_confidence(weight),
                categories=(MISSED_WORD,),
            ))
            expected_index += 1
        else:
            mistakes.append(Mistake(
                index=expected_index,
                type=EXTRA,
                word=entry.detected,
                confidence=extra_confidence(weight),
                categories=(EXTRA_WORD,),
            ))

    return mistakes


def build_alignment_confidence(alignment: List[AlignmentEntry], context: AlignmentContext) -> List[AlignmentConfidence]:
    """Confidence for every alignment entry, indexed by alignment position."""
    weight = context.model.weight
    threshold = context.substitution_threshold
    results = []

    for position, entry in enumerate(alignment):
        if entry.type == MATCH:
            similarity = entry.similarity or 0.0
            if similarity >= threshold:
                confidence = clamp_score(similarity * 100)
            else:
                confidence = substitution_confidence(similarity, entry.phonetic_similarity or 0.0, weight)
        elif entry.type == MISSING:
            confidence = missing_confidence(weight)
        else:
            confidence = extra_confidence(weight)

        results.append(AlignmentConfidence(
            index=position,
            type=entry.type,
            confidence=confidence,
            expected=entry.expected,
            detected=entry.detected,
        ))

    return results


def overall_confidence(alignment_confidence: List[AlignmentConfidence], mistakes: List[Mistake]) -> int:
    """Blend alignment and mistake confidence into one percentage."""
    if alignment_confidence:
        alignment_average = sum(item.confidence for item in alignment_confidence) / len(alignment_confidence)
    else:
        alignment_average = 100.0

    if mistakes:
        mistake_average = sum(mistake.confidence for mistake in mistakes) / len(mistakes)
    else:
        mistake_average = alignment_average

    return clamp_score(alignment_average * 0.6 + mistake_average * 0.4)


def count_by_type(mistakes: List[Mistake]) -> Dict[str, int]:
    counts = {MISSING: 0, SUBSTITUTION: 0, EXTRA: 0}
    for mistake in mistakes:
        counts[mistake.type] = counts.get(mistake.type, 0) + 1
    return counts


@dataclass(frozen=True)
class MistakeCategorySummary:
    category: str
    label: str
    description: str
    count: int
    indices: Tuple[int, ...] = field(default_factory=tuple)


def build_mistake_breakdown(mistakes: List[Mistake]) -> List[MistakeCategorySummary]:
    """Group mistakes by category, in fixed order, skipping empty categories."""
    grouped: Dict[str, List[int]] = {category: [] for category in MISTAKE_CATEGORY_ORDER}
    for mistake in mistakes:
        for category in mistake.categories:
            grouped.setdefault(category, []).append(mistake.index)

    breakdown = []
    for category in MISTAKE_CATEGORY_ORDER:
        indices = grouped[category]
        if not indices:
            continue
        meta = MISTAKE_CATEGORY_META[category]
        breakdown.append(MistakeCategorySummary(
            category=category,
            label=meta["label"],
            description=meta["description"],
            count=len(indices),
            indices=tuple(indices),
        ))
    return breakdown
