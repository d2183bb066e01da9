"""Multi-dimensional content quality scoring.

:meth:`QualityAssessor.assess` is pure and deterministic: the same text and
configuration always produce the same :class:`QualityReport`.  Four
component scores (0--100) are combined into a weighted composite:

1. **Readability** -- Flesch Reading Ease, Flesch--Kincaid Grade and Gunning
   Fog from sentence/word/syllable statistics.
2. **Coherence** -- vocabulary overlap between adjacent windows of
   sentences, plus a bonus for key terms that recur across paragraphs.
3. **Completeness** -- length, paragraph structure, section headings and
   sentence shape.  Very short documents are capped.
4. **Formatting** -- 100 minus severity penalties for detected issues
   (encoding damage, binary residue, truncation, duplicated lines, ...).

Detected issues also subtract a bounded penalty from the composite, and
every component below the "recommended" threshold yields a prioritized
recommendation.
"""

from __future__ import annotations

import re
from collections import Counter

import structlog
from rapidfuzz import fuzz, process

from course_rag.config.constants import (
    COHERENCE_FLOOR,
    COHERENCE_FULL_OVERLAP,
    COHERENCE_WINDOW,
    DEFAULT_QUALITY_WEIGHTS,
    MAX_ERROR_PENALTY,
    MIN_WORD_COUNT,
    READABILITY_FLOOR_LEVEL,
    READABILITY_LEVELS,
    SEVERITY_PENALTIES,
    SHORT_DOCUMENT_CAP,
    TARGET_WORD_COUNT,
)
from course_rag.models.document import NormalizedText
from course_rag.models.quality import (
    ComponentScores,
    IssueSeverity,
    IssueType,
    QualityIssue,
    QualityReport,
    QualityTier,
    ReadabilityMetrics,
    Recommendation,
)
from course_rag.utils import text_stats
from course_rag.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

_REPLACEMENT_CHAR = "\N{REPLACEMENT CHARACTER}"
_MOJIBAKE = re.compile("[\N{LATIN CAPITAL LETTER A WITH TILDE}\N{LATIN CAPITAL LETTER A WITH CIRCUMFLEX}][\x80-\xbf]|\N{LATIN SMALL LETTER A WITH CIRCUMFLEX}\N{EURO SIGN}")
_BINARY_RESIDUE = re.compile(r"[\x00-\x08\x0e-\x1f\x7f]")
_REPEATED_RUN = re.compile(r"(\S)\1{9,}")
_BROKEN_BOUNDARY = re.compile(r"[a-z]{2,}[.!?][A-Z][a-z]")
_TRUNCATION = re.compile(r"(?:\.\.\.|\N{HORIZONTAL ELLIPSIS})\s*$")
_MARKDOWN_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+\S", re.MULTILINE)
_NUMBERED_HEADING = re.compile(r"^\s*(?:\d+(?:\.\d+)*\.?|[IVX]+\.)\s+[A-Z]", re.MULTILINE)
_ALLOWED_PUNCTUATION = frozenset(".,;:!?'\"()-")

_DUPLICATE_LINE_MIN_CHARS = 50
_DUPLICATE_LINE_THRESHOLD = 5
_NEAR_DUPLICATE_SCORE = 95.0
_MAX_LINES_FOR_FUZZY = 2000
_SPECIAL_CHAR_RATIO = 0.3
_TOP_TERMS = 10

_SUGGESTIONS: dict[str, str] = {
    "readability": (
        "Shorten long sentences and prefer simpler words to make the material "
        "easier to read."
    ),
    "coherence": (
        "Improve transitions between sections so consecutive passages build on "
        "shared concepts."
    ),
    "completeness": (
        "Expand the content with more detail, clear sections and headings, and "
        "well-formed paragraphs."
    ),
    "formatting": (
        "Clean up formatting artifacts such as broken characters, duplicated "
        "lines and stray symbols."
    ),
}


class QualityAssessor:
    """Score normalized text and tier it against configurable thresholds.

    Parameters
    ----------
    weights:
        Component weights; normalized to sum to 1.  Missing components get
        weight 0.
    premium, recommended, minimum:
        Tier thresholds on the 0--100 composite.
    """

    def __init__(
        self,
        weights: dict[str, float] | None = None,
        premium: float = 85.0,
        recommended: float = 70.0,
        minimum: float = 50.0,
    ) -> None:
        raw = dict(weights or DEFAULT_QUALITY_WEIGHTS)
        unknown = set(raw) - set(DEFAULT_QUALITY_WEIGHTS)
        if unknown:
            raise ValidationError(message=f"Unknown quality weight keys: {sorted(unknown)}")
        total = sum(raw.values())
        if total <= 0 or any(w < 0 for w in raw.values()):
            raise ValidationError(message="Quality weights must be non-negative with a positive sum")
        self._weights = {name: raw.get(name, 0.0) / total for name in DEFAULT_QUALITY_WEIGHTS}
        self._premium = premium
        self._recommended = recommended
        self._minimum = minimum

    @property
    def weights(self) -> dict[str, float]:
        return dict(self._weights)

    def tier_for(self, score: float) -> QualityTier:
        if score >= self._premium:
            return QualityTier.PREMIUM
        if score >= self._recommended:
            return QualityTier.RECOMMENDED
        if score >= self._minimum:
            return QualityTier.ACCEPTABLE
        return QualityTier.BELOW_THRESHOLD

    def assess(self, normalized: NormalizedText | str) -> QualityReport:
        """Return the quality report for *normalized* text."""
        text = normalized.text if isinstance(normalized, NormalizedText) else normalized

        paragraphs = text_stats.split_paragraphs(text)
        sentences = text_stats.split_sentences(text)
        words = text_stats.words(text)

        readability, metrics = self._readability(words, sentences)
        coherence = self._coherence(sentences, paragraphs)
        completeness = self._completeness(text, words, sentences, paragraphs)
        issues = detect_issues(text)
        penalty_points = sum(SEVERITY_PENALTIES[i.severity.value] for i in issues)
        formatting = _clamp(100.0 - penalty_points) if text.strip() else 0.0

        components = ComponentScores(
            readability=round(readability, 2),
            coherence=round(coherence, 2),
            completeness=round(completeness, 2),
            formatting=round(formatting, 2),
        )
        weighted = sum(
            self._weights[name] * getattr(components, name) for name in self._weights
        )
        overall = round(_clamp(weighted - min(MAX_ERROR_PENALTY, penalty_points / 2.0)), 2)
        if not words:
            overall = 0.0

        report = QualityReport(
            overall_score=overall,
            tier=self.tier_for(overall),
            components=components,
            readability_metrics=metrics,
            errors=issues,
            recommendations=self._recommendations(components, issues, bool(words)),
            word_count=len(words),
            sentence_count=len(sentences),
            paragraph_count=len(paragraphs),
        )
        logger.debug(
            "quality_assessed",
            overall_score=report.overall_score,
            tier=report.tier.value,
            issues=len(issues),
            word_count=report.word_count,
        )
        return report

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @staticmethod
    def _readability(
        words: list[str], sentences: list[text_stats.Span]
    ) -> tuple[float, ReadabilityMetrics]:
        if not words or not sentences:
            return 0.0, ReadabilityMetrics(
                flesch_reading_ease=0.0,
                flesch_kincaid_grade=0.0,
                gunning_fog=0.0,
                level=READABILITY_FLOOR_LEVEL,
            )

        syllables = [text_stats.count_syllables(w) for w in words]
        words_per_sentence = len(words) / len(sentences)
        syllables_per_word = sum(syllables) / len(words)
        complex_share = sum(1 for s in syllables if s >= 3) / len(words)

        ease = 206.835 - 1.015 * words_per_sentence - 84.6 * syllables_per_word
        grade = 0.39 * words_per_sentence + 11.8 * syllables_per_word - 15.59
        fog = 0.4 * (words_per_sentence + 100.0 * complex_share)

        mean_grade = (grade + fog) / 2.0
        score = (_clamp(ease) + _clamp((20.0 - mean_grade) * 5.0)) / 2.0

        level = READABILITY_FLOOR_LEVEL
        for breakpoint, name in READABILITY_LEVELS:
            if ease >= breakpoint:
                level = name
                break

        return score, ReadabilityMetrics(
            flesch_reading_ease=round(ease, 2),
            flesch_kincaid_grade=round(grade, 2),
            gunning_fog=round(fog, 2),
            level=level,
        )

    @staticmethod
    def _coherence(
        sentences: list[text_stats.Span], paragraphs: list[text_stats.Span]
    ) -> float:
        windows = [
            set(text_stats.content_words(" ".join(s.text for s in sentences[i : i + COHERENCE_WINDOW])))
            for i in range(0, len(sentences), COHERENCE_WINDOW)
        ]
        if len(windows) < 2:
            return COHERENCE_FLOOR

        overlaps = [text_stats.jaccard(a, b) for a, b in zip(windows, windows[1:])]
        mean_overlap = sum(overlaps) / len(overlaps)
        base = _clamp(mean_overlap / COHERENCE_FULL_OVERLAP * 100.0)

        if len(paragraphs) < 2:
            return base

        # Share of the document's key terms that recur in two or more paragraphs.
        all_terms = Counter(text_stats.content_words(" ".join(p.text for p in paragraphs)))
        top_terms = [t for t, _ in sorted(all_terms.items(), key=lambda kv: (-kv[1], kv[0]))[:_TOP_TERMS]]
        if not top_terms:
            return base
        paragraph_terms = [set(text_stats.content_words(p.text)) for p in paragraphs]
        recurring = sum(
            1 for term in top_terms if sum(1 for terms in paragraph_terms if term in terms) >= 2
        )
        consistency = recurring / len(top_terms)
        return _clamp(base * 0.8 + consistency * 20.0)

    @staticmethod
    def _completeness(
        text: str,
        words: list[str],
        sentences: list[text_stats.Span],
        paragraphs: list[text_stats.Span],
    ) -> float:
        if not words:
            return 0.0

        length_points = min(1.0, len(words) / TARGET_WORD_COUNT) * 40.0

        if len(paragraphs) >= 3:
            structure_points = 30.0
        elif len(paragraphs) == 2:
            structure_points = 20.0
        else:
            structure_points = 10.0

        has_headings = bool(
            _MARKDOWN_HEADING.search(text)
            or _NUMBERED_HEADING.search(text)
            or any(_looks_like_heading(p.text) for p in paragraphs)
        )
        # Short pieces read fine without sections.
        section_points = 15.0 if has_headings or len(words) < 2 * TARGET_WORD_COUNT else 5.0

        words_per_sentence = len(words) / max(1, len(sentences))
        sentence_points = 15.0 if 5.0 <= words_per_sentence <= 35.0 else 7.5

        score = length_points + structure_points + section_points + sentence_points
        if len(words) < MIN_WORD_COUNT:
            score = min(score, SHORT_DOCUMENT_CAP)
        return _clamp(score)

    def _recommendations(
        self,
        components: ComponentScores,
        issues: list[QualityIssue],
        has_content: bool,
    ) -> list[Recommendation]:
        recommendations: list[Recommendation] = []
        if not has_content:
            return [
                Recommendation(
                    area="completeness",
                    priority=IssueSeverity.HIGH,
                    suggestion="The document has no readable content.",
                )
            ]

        for name in DEFAULT_QUALITY_WEIGHTS:
            score = getattr(components, name)
            gap = self._recommended - score
            if gap <= 0:
                continue
            if gap >= 30:
                priority = IssueSeverity.HIGH
            elif gap >= 15:
                priority = IssueSeverity.MEDIUM
            else:
                priority = IssueSeverity.LOW
            recommendations.append(
                Recommendation(area=name, priority=priority, suggestion=_SUGGESTIONS[name])
            )

        for issue in issues:
            if issue.severity is IssueSeverity.HIGH:
                recommendations.append(
                    Recommendation(
                        area="errors",
                        priority=IssueSeverity.HIGH,
                        suggestion=f"Fix {issue.type.value} issue: {issue.message}",
                    )
                )
        return recommendations


# ---------------------------------------------------------------------------
# Issue detection
# ---------------------------------------------------------------------------


def detect_issues(text: str) -> list[QualityIssue]:
    """Return content defects found in *text*, in a fixed order."""
    if not text.strip():
        return []

    issues: list[QualityIssue] = []

    broken = text.count(_REPLACEMENT_CHAR) + len(_MOJIBAKE.findall(text))
    if broken:
        issues.append(
            QualityIssue(
                type=IssueType.ENCODING,
                severity=IssueSeverity.MEDIUM,
                message=f"{broken} replacement or mis-decoded character sequence(s)",
                count=broken,
            )
        )

    binary = len(_BINARY_RESIDUE.findall(text))
    if binary:
        issues.append(
            QualityIssue(
                type=IssueType.BINARY,
                severity=IssueSeverity.HIGH,
                message=f"{binary} control character(s) suggest binary residue",
                count=binary,
            )
        )

    runs = len(_REPEATED_RUN.findall(text))
    if runs:
        issues.append(
            QualityIssue(
                type=IssueType.FORMATTING,
                severity=IssueSeverity.MEDIUM if runs > 2 else IssueSeverity.LOW,
                message=f"{runs} run(s) of a repeated character",
                count=runs,
            )
        )

    boundaries = len(_BROKEN_BOUNDARY.findall(text))
    if boundaries >= 3:
        issues.append(
            QualityIssue(
                type=IssueType.FORMATTING,
                severity=IssueSeverity.LOW,
                message=f"{boundaries} sentence boundaries missing a space",
                count=boundaries,
            )
        )

    if _TRUNCATION.search(text):
        issues.append(
            QualityIssue(
                type=IssueType.TRUNCATION,
                severity=IssueSeverity.HIGH,
                message="Content appears to be truncated",
            )
        )

    duplicates = count_duplicate_lines(text)
    if duplicates > _DUPLICATE_LINE_THRESHOLD:
        issues.append(
            QualityIssue(
                type=IssueType.DUPLICATION,
                severity=IssueSeverity.MEDIUM,
                message=f"{duplicates} duplicated or near-duplicated lines",
                count=duplicates,
            )
        )

    ratio = special_character_ratio(text)
    if ratio > _SPECIAL_CHAR_RATIO:
        issues.append(
            QualityIssue(
                type=IssueType.FORMATTING,
                severity=IssueSeverity.LOW,
                message=f"High special character ratio ({ratio:.0%})",
            )
        )

    return issues


def count_duplicate_lines(text: str) -> int:
    """Count long lines that repeat (or nearly repeat) an earlier line."""
    seen: list[str] = []
    exact: set[str] = set()
    duplicates = 0
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if len(line) <= _DUPLICATE_LINE_MIN_CHARS:
            continue
        key = line.casefold()
        if key in exact:
            duplicates += 1
            continue
        if len(seen) < _MAX_LINES_FOR_FUZZY and process.extractOne(
            key, seen, scorer=fuzz.ratio, score_cutoff=_NEAR_DUPLICATE_SCORE
        ):
            duplicates += 1
            continue
        exact.add(key)
        seen.append(key)
    return duplicates


def special_character_ratio(text: str) -> float:
    visible = [c for c in text if not c.isspace()]
    if not visible:
        return 0.0
    special = sum(1 for c in visible if not c.isalnum() and c not in _ALLOWED_PUNCTUATION)
    return special / len(visible)


def _looks_like_heading(paragraph: str) -> bool:
    line = paragraph.strip()
    return (
        "\n" not in line
        and 0 < len(line.split()) <= 10
        and line[-1] not in ".!?,;:"
        and line[0].isupper()
    )


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))
