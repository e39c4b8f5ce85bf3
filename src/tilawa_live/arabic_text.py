"""
Arabic text helpers shared by the phonetic model, the aligner and the
transcript merger.
"""

import re
import unicodedata
from typing import List, Tuple

# Tashkeel, Quranic annotation signs and dagger alif
ARABIC_DIACRITICS = re.compile(r"[\u064B-\u065F\u0670\u06D6-\u06ED]")
# Tashkeel and dagger alif only, used for scoring and transcript merging
SCORING_DIACRITICS = re.compile(r"[\u064B-\u065F\u0670]")
# Tatweel, ZWNJ, ZWJ
JOINERS = re.compile(r"[\u0640\u200C\u200D]")
NON_ARABIC_LETTERS = re.compile(r"[^\u0621-\u064A\s]")
WHITESPACE = re.compile(r"\s+")
NON_SPACE_RUN = re.compile(r"\S+")


def normalize_word(word: str) -> str:
    """Strip diacritics and joiners from a single word for phonetic comparison."""
    text = unicodedata.normalize("NFC", word or "")
    text = ARABIC_DIACRITICS.sub("", text)
    text = JOINERS.sub("", text)
    return text.strip()


def split_words(text: str) -> List[str]:
    """Split text into raw whitespace-delimited tokens."""
    if not text:
        return []
    return unicodedata.normalize("NFC", text).split()


def normalize_for_scoring(word: str) -> str:
    """
    Normalize a token for scoring comparisons.

    Removes joiners and diacritics, drops anything that is not a letter, mark
    or number, and case-folds the result.
    """
    text = unicodedata.normalize("NFC", word or "")
    text = JOINERS.sub("", text)
    text = SCORING_DIACRITICS.sub("", text)
    text = "".join(ch for ch in text if unicodedata.category(ch)[0] in ("L", "M", "N"))
    return text.lower()


def normalize_arabic(text: str) -> str:
    """Reduce text to bare Arabic letters separated by single spaces."""
    text = SCORING_DIACRITICS.sub("", text or "")
    text = text.replace("\u0640", "")
    text = NON_ARABIC_LETTERS.sub("", text)
    return WHITESPACE.sub(" ", text).strip()


def count_arabic_letters(text: str) -> int:
    """Count letters belonging to the Arabic script."""
    count = 0
    for ch in text or "":
        if unicodedata.category(ch).startswith("L") and unicodedata.name(ch, "").startswith("ARABIC"):
            count += 1
    return count


def word_spans(text: str) -> List[Tuple[str, int, int]]:
    """Return (word, start, end) character offsets for every non-space run."""
    return [(match.group(0), match.start(), match.end()) for match in NON_SPACE_RUN.finditer(text or "")]
