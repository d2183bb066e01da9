"""Lightweight language identification for normalized document text.

Two signals are combined:

* **Script ranges** -- Japanese kana, Hangul, CJK ideographs, Arabic,
  Devanagari and Cyrillic are identified by the share of letters falling
  into their Unicode blocks.
* **Stop-word frequency** -- Latin-script languages (English, Spanish,
  French, German, Italian, Portuguese, Dutch) are scored by the share of
  words that are high-frequency function words of that language.

Detection never raises.  Text without enough evidence is reported as
``"unknown"`` with confidence ``0.0``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

UNKNOWN = "unknown"

_STOP_WORDS: dict[str, frozenset[str]] = {
    "en": frozenset(
        "the and is in to of that it with for as was on are be this by "
        "from have at or which an not but they you we".split()
    ),
    "es": frozenset(
        "el la de que y en los las del se por con para una es un al lo "
        "como más pero sus le ya muy también".split()
    ),
    "fr": frozenset(
        "le la les de des et est dans que pour pas une un du sur au avec "
        "ce qui sont nous vous ils aux".split()
    ),
    "de": frozenset(
        "der die das und ist nicht ein eine zu den mit von sich auf für "
        "dem des im auch es wird sind wir ich".split()
    ),
    "it": frozenset(
        "il lo la di che è e non per una un gli le del della sono con "
        "nel alla come anche questo più".split()
    ),
    "pt": frozenset(
        "o a os as de que e do da em um uma para com não é no na dos das "
        "por mais foi são ao".split()
    ),
    "nl": frozenset(
        "de het een en van is dat niet op te zijn voor met die er aan "
        "ook als bij maar wordt door".split()
    ),
}

# Ordered so that kana wins over shared CJK ideographs for Japanese text.
_SCRIPT_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("ja", re.compile(r"[\u3040-\u309f\u30a0-\u30ff]")),
    ("ko", re.compile(r"[\uac00-\ud7af\u1100-\u11ff]")),
    ("zh", re.compile(r"[\u4e00-\u9fff\u3400-\u4dbf]")),
    ("ar", re.compile(r"[\u0600-\u06ff\u0750-\u077f]")),
    ("hi", re.compile(r"[\u0900-\u097f]")),
    ("ru", re.compile(r"[\u0400-\u04ff]")),
]

SUPPORTED_LANGUAGES: tuple[str, ...] = tuple(_STOP_WORDS) + tuple(
    code for code, _ in _SCRIPT_PATTERNS
)

_LATIN_WORD_RE = re.compile(r"[^\W\d_]+", re.UNICODE)
_LETTER_RE = re.compile(r"[^\W\d_]", re.UNICODE)

# Japanese text mixes kana with kanji; a modest kana share is decisive.
_KANA_DECISIVE_SHARE = 0.1
_MIN_WORDS = 3


@dataclass(frozen=True)
class LanguageGuess:
    """Result of language detection."""

    language: str
    confidence: float
    scores: dict[str, float] = field(default_factory=dict)


def detect_language(text: str, min_confidence: float = 0.2) -> LanguageGuess:
    """Return the most likely language of *text*.

    Parameters
    ----------
    text:
        Normalized document text.
    min_confidence:
        Guesses below this confidence are reported as ``"unknown"``.
    """
    if not text or not text.strip():
        return LanguageGuess(language=UNKNOWN, confidence=0.0)

    letters = _LETTER_RE.findall(text)
    if not letters:
        return LanguageGuess(language=UNKNOWN, confidence=0.0)

    scores: dict[str, float] = {}
    for code, pattern in _SCRIPT_PATTERNS:
        scores[code] = len(pattern.findall(text)) / len(letters)

    # Kanji are shared with Chinese; kana presence marks Japanese text.
    if scores["ja"] >= _KANA_DECISIVE_SHARE:
        scores["ja"] = min(1.0, scores["ja"] + scores["zh"])
        scores["zh"] = 0.0

    tokens = [w.lower() for w in _LATIN_WORD_RE.findall(text)]
    if len(tokens) >= _MIN_WORDS:
        for code, stop_words in _STOP_WORDS.items():
            hits = sum(1 for t in tokens if t in stop_words)
            scores[code] = hits / len(tokens)

    best = max(scores, key=lambda code: (scores[code], -SUPPORTED_LANGUAGES.index(code)))
    confidence = round(scores[best], 4)
    rounded = {code: round(score, 4) for code, score in scores.items() if score > 0}
    if confidence <= 0.0 or confidence < min_confidence:
        return LanguageGuess(language=UNKNOWN, confidence=confidence, scores=rounded)
    return LanguageGuess(language=best, confidence=confidence, scores=rounded)
