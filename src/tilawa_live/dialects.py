"""
Choose which phonetic model to use for a recitation session.
"""

import re
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .phonetics import DEFAULT_DIALECT, PhoneticModel, PhoneticModelRegistry, is_dialect_code


logger = logging.getLogger(__name__)

TEXT_SCAN_LIMIT = 160

# Checked in order; the first pattern that matches wins.
LOCALE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"(en|ur|bn|hi|ml|ta)-(in|pk|bd)"), "south_asian"),
    (re.compile(r"ar-(ma|dz|tn|ly|mr)|fr-(ma|dz|tn)"), "north_african"),
    (re.compile(r"ar-(eg|sa|ae|qa|bh|om|jo|ps|lb|sy|iq|kw|ye)"), "middle_eastern"),
]

# Word boundaries are ASCII-only: an Arabic letter is word-initial only right
# after a Latin word character, so plain Arabic text falls through to the
# letter signals (پ, گ, ڤ) or the fallback.
DIALECT_KEYWORDS: List[Tuple[str, List[re.Pattern]]] = [
    ("middle_eastern", [re.compile(r"\bج\w*", re.ASCII), re.compile(r"\bق\w*", re.ASCII)]),
    ("south_asian", [re.compile("پ"), re.compile("گ"), re.compile(r"\bذ\w*", re.ASCII)]),
    ("north_african", [re.compile("ڤ"), re.compile(r"\bج\w*", re.ASCII), re.compile(r"\bق\w*", re.ASCII)]),
]


@dataclass(frozen=True)
class DialectResolution:
    """The chosen phonetic model and how it was chosen."""
    model: PhoneticModel
    source: str
    confidence: float
    reasons: Tuple[str, ...]


def locale_to_dialect(locale: Optional[str]) -> Optional[str]:
    """Map a locale tag such as ``ur-PK`` to a dialect code."""
    if not locale:
        return None
    lowered = locale.lower()
    for pattern, dialect in LOCALE_PATTERNS:
        if pattern.search(lowered):
            return dialect
    return None


def detect_dialect_from_text(text: Optional[str]) -> Optional[str]:
    """Look for dialect-indicative letters near the start of the text."""
    if not text:
        return None
    sample = text[:TEXT_SCAN_LIMIT]
    for dialect, patterns in DIALECT_KEYWORDS:
        if any(pattern.search(sample) for pattern in patterns):
            return dialect
    return None


class DialectResolver:
    """Resolves a dialect preference into a phonetic model."""

    def __init__(self, registry: Optional[PhoneticModelRegistry] = None):
        self.registry = registry or PhoneticModelRegistry()
        self.logger = logging.getLogger(__name__)

    def resolve(
        self,
        preference: Optional[str] = None,
        expected_text: Optional[str] = None,
        transcript: Optional[str] = None,
        locale_hint: Optional[str] = None,
        fallback: str = DEFAULT_DIALECT,
    ) -> DialectResolution:
        """
        Pick a phonetic model.

        Order: explicit preference, locale hint, text heuristics, fallback.

        Args:
            preference: Dialect code, "auto" or None
            expected_text: Reference ayah text
            transcript: Detected transcription, scanned before expected_text
            locale_hint: Locale tag such as "ar-MA"
            fallback: Dialect code used when nothing else matches

        Returns:
            DialectResolution
        """
        if preference and preference != "auto" and is_dialect_code(preference):
            return self._resolution(preference, "user", 0.95, "User preference")

        locale_dialect = locale_to_dialect(locale_hint)
        if locale_dialect:
            return self._resolution(locale_dialect, "locale", 0.75, f"Locale hint matched {locale_dialect}")

        text_dialect = detect_dialect_from_text(transcript or expected_text)
        if text_dialect:
            return self._resolution(
                text_dialect, "text", 0.65, f"Detected characters associated with {text_dialect} recitations"
            )

        if not is_dialect_code(fallback):
            fallback = DEFAULT_DIALECT
        return self._resolution(fallback, "default", 0.5, "Defaulted to standard Quranic phonetics")

    def _resolution(self, code: str, source: str, confidence: float, reason: str) -> DialectResolution:
        self.logger.debug(f"Resolved dialect '{code}' from {source}")
        return DialectResolution(
            model=self.registry.get(code),
            source=source,
            confidence=confidence,
            reasons=(reason,),
        )


def resolve_dialect(
    preference: Optional[str] = None,
    expected_text: Optional[str] = None,
    transcript: Optional[str] = None,
    locale_hint: Optional[str] = None,
    fallback: str = DEFAULT_DIALECT,
    registry: Optional[PhoneticModelRegistry] = None,
) -> DialectResolution:
    """Convenience function for one-off resolutions."""
    return DialectResolver(registry).resolve(
        preference,
        expected_text=expected_text,
        transcript=transcript,
        locale_hint=locale_hint,
        fallback=fallback,
    )
