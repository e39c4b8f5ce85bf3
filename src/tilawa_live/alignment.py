"""
Word-level alignment between an expected ayah and a detected transcription.

The aligner runs an edit-distance dynamic program over word tokens. The cost
of pairing two words is one minus their combined similarity under the
session's phonetic model; skipping a word on either side costs one.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .arabic_text import normalize_for_scoring, split_words
from .config import DEFAULT_SUBSTITUTION_THRESHOLD, clamp_substitution_threshold
from .phonetics import PhoneticModel


logger = logging.getLogger(__name__)

MATCH = "match"
MISSING = "missing"
EXTRA = "extra"

# Backtrack actions, listed in tie-break order
_DIAGONAL = MATCH
_DELETE = MISSING
_INSERT = EXTRA


@dataclass(frozen=True)
class Token:
    """A word with its surface form and scoring form."""
    raw: str
    normalized: str


@dataclass(frozen=True)
class AlignmentEntry:
    """One edit-script operation."""
    type: str
    expected: Optional[str] = None
    detected: Optional[str] = None
    similarity: Optional[float] = None
    text_similarity: Optional[float] = None
    phonetic_similarity: Optional[float] = None

    @property
    def is_match(self) -> bool:
        return self.type == MATCH


@dataclass(frozen=True)
class AlignmentContext:
    """Phonetic model and threshold shared by alignment and scoring."""
    model: PhoneticModel
    substitution_threshold: float = DEFAULT_SUBSTITUTION_THRESHOLD

    def __post_init__(self):
        object.__setattr__(
            self, "substitution_threshold", clamp_substitution_threshold(self.substitution_threshold)
        )


def tokenize(text: str) -> List[Token]:
    """Split text into tokens, keeping the raw form next to the normalized one."""
    return [Token(raw=word, normalized=normalize_for_scoring(word)) for word in split_words(text)]


def align_tokens(expected: List[Token], detected: List[Token], model: PhoneticModel) -> List[AlignmentEntry]:
    """
    Align two word sequences.

    Ties between equal-cost paths are broken match, then missing, then extra.

    Args:
        expected: Reference tokens
        detected: Recognized tokens
        model: Phonetic model providing word similarity

    Returns:
        Alignment entries in reading order
    """
    rows = len(expected) + 1
    cols = len(detected) + 1

    costs = [[0.0] * cols for _ in range(rows)]
    actions = [[_DIAGONAL] * cols for _ in range(rows)]
    comparisons = {}

    for i in range(1, rows):
        costs[i][0] = float(i)
        actions[i][0] = _DELETE
    for j in range(1, cols):
        costs[0][j] = float(j)
        actions[0][j] = _INSERT

    for i in range(1, rows):
        for j in range(1, cols):
            comparison = model.compare(expected[i - 1].raw, detected[j - 1].raw)
            comparisons[(i - 1, j - 1)] = comparison

            best_cost = costs[i - 1][j - 1] + (1 - comparison.combined_similarity)
            best_action = _DIAGONAL

            delete_cost = costs[i - 1][j] + 1
            if delete_cost < best_cost:
                best_cost = delete_cost
                best_action = _DELETE

            insert_cost = costs[i][j - 1] + 1
            if insert_cost < best_cost:
                best_cost = insert_cost
                best_action = _INSERT

            costs[i][j] = best_cost
            actions[i][j] = best_action

    entries: List[AlignmentEntry] = []
    i, j = len(expected), len(detected)
    while i > 0 or j > 0:
        action = actions[i][j]
        if i > 0 and j > 0 and action == _DIAGONAL:
            comparison = comparisons[(i - 1, j - 1)]
            entries.append(AlignmentEntry(
                type=MATCH,
                expected=expected[i - 1].raw,
                detected=detected[j - 1].raw,
                similarity=comparison.combined_similarity,
                text_similarity=comparison.text_similarity,
                phonetic_similarity=comparison.phonetic_similarity,
            ))
            i -= 1
            j -= 1
        elif i > 0 and (j == 0 or action == _DELETE):
            entries.append(AlignmentEntry(type=MISSING, expected=expected[i - 1].raw))
            i -= 1
        else:
            entries.append(AlignmentEntry(type=EXTRA, detected=detected[j - 1].raw))
            j -= 1

    entries.reverse()
    return entries


def align_words(expected_text: str, detected_text: str, context: AlignmentContext) -> List[AlignmentEntry]:
    """Tokenize both texts and align them under the context's phonetic model."""
    expected = tokenize(expected_text)
    detected = tokenize(detected_text)
    logger.debug(f"Aligning {len(expected)} expected against {len(detected)} detected words")
    return align_tokens(expected, detected, context.model)


def is_correct_match(entry: AlignmentEntry, threshold: float) -> bool:
    return entry.type == MATCH and (entry.similarity or 0.0) >= threshold
