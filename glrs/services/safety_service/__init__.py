"""Safety Service: tiered crisis keyword detection.

Every check-in, reflection and AI chat turn is scanned here before an AI
response is generated. Detection is deterministic, side-effect free and
never raises.

Components:
- keywords.py: Tiered lexicon (KeywordDatabase) and matching primitives
- text_normalizer.py: Canonical token stream (leetspeak, unicode, shorthand)
- detector.py: CrisisDetector and scan_for_crisis
- config.py: Thresholds, negation words, abbreviations, crisis responses
- handler.py: Flask HTTP endpoints (/health, /ready, /scan)
- cli.py: Command-line scanner

Usage:
    # As HTTP service
    POST /scan {"text": "...", "user_id": "...", "source": "check-in"}

    # Direct import
    from glrs.services.safety_service import scan_for_crisis
    result = scan_for_crisis(text, context="chat")
"""

from .config import CRISIS_RESPONSES, SafetyConfig
from .detector import (
    CrisisDetector,
    DetectionResult,
    MatchedTerm,
    extract_context,
    get_detector,
    scan_for_crisis,
)
from .keywords import (
    KeywordDatabase,
    KeywordEntry,
    MatchMode,
    create_keyword_pattern,
    correct_misspelling,
    expand_abbreviation,
    get_keyword_counts,
    get_keyword_database,
    get_keywords_for_tier,
    has_negation_before,
    levenshtein_distance,
    similarity_ratio,
)
from .text_normalizer import TextNormalizer, normalize_text

__all__ = [
    "CRISIS_RESPONSES",
    "SafetyConfig",
    "CrisisDetector",
    "DetectionResult",
    "MatchedTerm",
    "extract_context",
    "get_detector",
    "scan_for_crisis",
    "KeywordDatabase",
    "KeywordEntry",
    "MatchMode",
    "create_keyword_pattern",
    "correct_misspelling",
    "expand_abbreviation",
    "get_keyword_counts",
    "get_keyword_database",
    "get_keywords_for_tier",
    "has_negation_before",
    "levenshtein_distance",
    "similarity_ratio",
    "TextNormalizer",
    "normalize_text",
]
