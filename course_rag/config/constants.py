"""Static tuning constants shared by settings, services and providers.

These are the values the quality assessor and index layer fall back on when
no explicit configuration is supplied.  Anything operators routinely tune
lives on :class:`~course_rag.config.settings.Settings` instead.
"""

# Supported distance metrics for the vector collection.  The keys are the
# names callers use; values are the ChromaDB ``hnsw:space`` equivalents.
DISTANCE_METRICS: dict[str, str] = {
    "cosine": "cosine",
    "dot": "ip",
    "euclidean": "l2",
}

CHUNK_STRATEGIES: tuple[str, ...] = ("fixed", "sentence", "paragraph", "semantic")

# Composite quality weights, normalized to sum 1 at use.
DEFAULT_QUALITY_WEIGHTS: dict[str, float] = {
    "readability": 0.3,
    "coherence": 0.3,
    "completeness": 0.2,
    "formatting": 0.2,
}

# Penalty points per detected issue, by severity.
SEVERITY_PENALTIES: dict[str, float] = {
    "low": 5.0,
    "medium": 10.0,
    "high": 20.0,
}
MAX_ERROR_PENALTY = 30.0

# Coherence scoring
COHERENCE_WINDOW = 3
COHERENCE_FULL_OVERLAP = 0.35
COHERENCE_FLOOR = 50.0

# Completeness scoring
MIN_WORD_COUNT = 50
SHORT_DOCUMENT_CAP = 30.0
TARGET_WORD_COUNT = 300

# Flesch Reading Ease breakpoints -> readability level.
READABILITY_LEVELS: list[tuple[float, str]] = [
    (90.0, "very easy"),
    (80.0, "easy"),
    (70.0, "fairly easy"),
    (60.0, "standard"),
    (50.0, "fairly difficult"),
    (30.0, "difficult"),
]
READABILITY_FLOOR_LEVEL = "very difficult"

# Document profile
READING_WORDS_PER_MINUTE = 200
KEY_PHRASE_LIMIT = 10
KEY_PHRASE_MIN_LENGTH = 4
# A first line becomes the title only when its length is inside these bounds.
TITLE_MIN_LENGTH = 6
TITLE_MAX_LENGTH = 99
UNTITLED_DOCUMENT = "Untitled Document"

# Payload keys every indexed entry carries; also the filterable fields.
PAYLOAD_DOCUMENT_ID = "document_id"
PAYLOAD_QUALITY = "quality_score"
PAYLOAD_LANGUAGE = "language"
PAYLOAD_COURSE_ID = "course_id"
PAYLOAD_CHUNK_INDEX = "chunk_index"
