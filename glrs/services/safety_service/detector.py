"""Crisis detection engine.

Scans member text against the tiered keyword database and returns a
DetectionResult. Every check-in, reflection and chat turn passes through
here before an AI response is generated.

Resolution is max-by-severity across all surviving matches: a single
CRITICAL match outranks any number of STANDARD matches.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from glrs.shared.models import CrisisTier
from glrs.shared.utils import hash_text_for_audit
from .config import NEGATION_WORDS, SafetyConfig
from .keywords import (
    KeywordDatabase,
    KeywordEntry,
    MatchMode,
    get_keyword_database,
    has_negation_before,
    similarity_ratio,
)
from .text_normalizer import CLAUSE_BREAK, NormalizedText, TextNormalizer, get_normalizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchedTerm:
    """A lexicon entry found in scanned text."""
    phrase: str
    category: str
    tier: CrisisTier
    matched_text: str
    mode: MatchMode = MatchMode.EXACT
    similarity: float = 1.0
    token_index: int = 0
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phrase": self.phrase,
            "category": self.category,
            "tier": self.tier.value,
            "matched_text": self.matched_text,
            "mode": self.mode.value,
            "similarity": round(self.similarity, 3),
        }


@dataclass(frozen=True)
class DetectionResult:
    """Classification of one scanned text.

    Immutable. Built fresh per scan; consumed by the alert lifecycle manager
    when the resolved tier creates alerts.

    Attributes:
        input_text: Scanned text, truncated for audit and alert display
        resolved_tier: Highest tier with a surviving match, or NONE
        matched_terms: Surviving matches across all tiers, most severe first
        excluded_by_negation: Lexical matches suppressed by a preceding negation
        source: Where the text came from (check-in, chat, reflection, ...)
        lexicon_version: Keyword database version used for the scan
        confidence: Best similarity among matches in the resolved tier
        scan_latency_ms: Wall-clock scan time (not part of equality)
    """
    input_text: str
    resolved_tier: CrisisTier = CrisisTier.NONE
    matched_terms: Tuple[MatchedTerm, ...] = ()
    excluded_by_negation: Tuple[MatchedTerm, ...] = ()
    source: Optional[str] = None
    lexicon_version: str = ""
    confidence: float = 0.0
    scan_latency_ms: float = field(default=0.0, compare=False)

    @property
    def primary_term(self) -> Optional[MatchedTerm]:
        """First surviving match in the resolved tier."""
        for term in self.matched_terms:
            if term.tier is self.resolved_tier:
                return term
        return None

    @property
    def is_actionable(self) -> bool:
        return self.resolved_tier.is_actionable

    def terms_for_tier(self, tier: CrisisTier) -> List[MatchedTerm]:
        return [term for term in self.matched_terms if term.tier is tier]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses (excludes the text itself)."""
        primary = self.primary_term
        return {
            "resolved_tier": self.resolved_tier.value,
            "matched_terms": [term.to_dict() for term in self.matched_terms],
            "excluded_by_negation": [term.to_dict() for term in self.excluded_by_negation],
            "primary_term": primary.phrase if primary else None,
            "category": primary.category if primary else None,
            "source": self.source,
            "lexicon_version": self.lexicon_version,
            "confidence": round(self.confidence, 3),
            "scan_latency_ms": round(self.scan_latency_ms, 2),
        }


@dataclass(frozen=True)
class _Candidate:
    token_index: int
    matched_text: str
    mode: MatchMode
    similarity: float


Matcher = Callable[[KeywordEntry, NormalizedText, KeywordDatabase, SafetyConfig], Iterator[_Candidate]]


def _exact_matches(
    entry: KeywordEntry,
    normalized: NormalizedText,
    database: KeywordDatabase,
    config: SafetyConfig,
) -> Iterator[_Candidate]:
    text = normalized.text
    for match in database.pattern_for(entry).finditer(text):
        yield _Candidate(
            token_index=normalized.token_index_at(match.start()),
            matched_text=match.group(0),
            mode=MatchMode.EXACT,
            similarity=1.0,
        )


def _fuzzy_matches(
    entry: KeywordEntry,
    normalized: NormalizedText,
    database: KeywordDatabase,
    config: SafetyConfig,
) -> Iterator[_Candidate]:
    """Compare the phrase against every token n-gram of the same length."""
    size = entry.word_count
    tokens = normalized.tokens
    for index in range(len(tokens) - size + 1):
        window = tokens[index:index + size]
        if CLAUSE_BREAK in window:
            continue
        candidate = " ".join(window)
        if candidate == entry.phrase or database.is_fuzzy_excluded(candidate):
            continue  # exact matcher owns lexicon words
        score = similarity_ratio(candidate, entry.phrase)
        if score >= config.fuzzy_match_threshold:
            yield _Candidate(
                token_index=index,
                matched_text=candidate,
                mode=MatchMode.FUZZY,
                similarity=score,
            )


# One matcher per MatchMode variant; a new mode is a new entry here
MATCHERS: Mapping[MatchMode, Matcher] = {
    MatchMode.EXACT: _exact_matches,
    MatchMode.FUZZY: _fuzzy_matches,
}


def extract_context(tokens: Sequence[str], index: int, window: int = 10) -> str:
    """Tokens around a match, for alert excerpts. Clause markers are dropped."""
    start = max(0, index - window)
    end = min(len(tokens), index + window + 1)
    return " ".join(token for token in tokens[start:end] if token != CLAUSE_BREAK)


class CrisisDetector:
    """Deterministic tiered keyword detector.

    Stateless after construction; safe to share across threads and call
    concurrently.
    """

    def __init__(
        self,
        config: Optional[SafetyConfig] = None,
        database: Optional[KeywordDatabase] = None,
        normalizer: Optional[TextNormalizer] = None,
    ):
        self.config = config or SafetyConfig()
        self.database = database or get_keyword_database()
        self._normalizer = normalizer or get_normalizer()

        logger.info(
            "CRISIS_DETECTOR_INITIALIZED",
            extra={
                "lexicon_version": self.database.version,
                "keyword_count": len(self.database),
                "fuzzy_match_threshold": self.config.fuzzy_match_threshold,
                "negation_window": self.config.negation_window,
            }
        )

    def scan(self, text: Any, context: Optional[str] = None) -> DetectionResult:
        """Classify text against the keyword database.

        Never raises. Empty, whitespace-only or non-string input resolves
        to NONE, as does any internal failure (which is logged).

        Args:
            text: Raw member text
            context: Source label (check-in, chat, reflection, ...)

        Returns:
            DetectionResult

        Logs:
            - CRISIS_DETECTED: CRITICAL tier (critical level)
            - CRISIS_SCAN_HIGH_RISK: HIGH tier (warning level)
            - CRISIS_SCAN_COMPLETED: every successful scan
            - CRISIS_SCAN_ERROR: internal failure, degraded to NONE
        """
        start_time = time.perf_counter()

        if not isinstance(text, str):
            logger.warning(
                "CRISIS_SCAN_INVALID_INPUT",
                extra={"input_type": type(text).__name__, "source": context}
            )
            return self._empty_result("", context, start_time)

        try:
            return self._scan(text, context, start_time)
        except Exception as e:
            logger.error(
                "CRISIS_SCAN_ERROR",
                extra={
                    "source": context,
                    "text_hash": hash_text_for_audit(text),
                    "error_type": type(e).__name__,
                    "error": str(e),
                }
            )
            return self._empty_result(text, context, start_time)

    def _scan(self, text: str, context: Optional[str], start_time: float) -> DetectionResult:
        normalized = self._normalizer.tokenize(text)
        if not normalized:
            return self._empty_result(text, context, start_time)

        matched: List[MatchedTerm] = []
        excluded: List[MatchedTerm] = []

        for entry in self.database.iter_entries():
            surviving, negated = self._match_entry(entry, normalized)
            if surviving is not None:
                matched.append(surviving)
            elif negated is not None:
                excluded.append(negated)

        resolved = max((term.tier for term in matched), default=CrisisTier.NONE)
        confidence = max(
            (term.similarity for term in matched if term.tier is resolved),
            default=0.0,
        )
        latency_ms = (time.perf_counter() - start_time) * 1000

        result = DetectionResult(
            input_text=text[:self.config.max_excerpt_chars],
            resolved_tier=resolved,
            matched_terms=tuple(matched),
            excluded_by_negation=tuple(excluded),
            source=context,
            lexicon_version=self.database.version,
            confidence=confidence,
            scan_latency_ms=latency_ms,
        )
        self._log_result(result, text)
        return result

    def _match_entry(
        self,
        entry: KeywordEntry,
        normalized: NormalizedText,
    ) -> Tuple[Optional[MatchedTerm], Optional[MatchedTerm]]:
        """Run every mode of an entry; return (first surviving, first negated)."""
        candidates: Dict[int, _Candidate] = {}
        for mode in entry.modes:
            for candidate in MATCHERS[mode](entry, normalized, self.database, self.config):
                current = candidates.get(candidate.token_index)
                if current is None or candidate.similarity > current.similarity:
                    candidates[candidate.token_index] = candidate

        first_negated: Optional[MatchedTerm] = None
        for index in sorted(candidates):
            term = self._to_term(entry, candidates[index], normalized)
            if entry.negation_sensitive and has_negation_before(
                normalized.tokens,
                index,
                self.config.negation_window,
                NEGATION_WORDS,
            ):
                if first_negated is None:
                    first_negated = term
                continue
            return term, None
        return None, first_negated

    def _to_term(
        self,
        entry: KeywordEntry,
        candidate: _Candidate,
        normalized: NormalizedText,
    ) -> MatchedTerm:
        return MatchedTerm(
            phrase=entry.phrase,
            category=entry.category,
            tier=entry.tier,
            matched_text=candidate.matched_text,
            mode=candidate.mode,
            similarity=candidate.similarity,
            token_index=candidate.token_index,
            context=extract_context(
                normalized.tokens, candidate.token_index, self.config.context_window
            ),
        )

    def _empty_result(self, text: str, context: Optional[str], start_time: float) -> DetectionResult:
        return DetectionResult(
            input_text=text[:self.config.max_excerpt_chars],
            source=context,
            lexicon_version=self.database.version,
            scan_latency_ms=(time.perf_counter() - start_time) * 1000,
        )

    def _log_result(self, result: DetectionResult, text: str) -> None:
        fields = {
            "text_hash": hash_text_for_audit(text),
            "text_length": len(text),
            "source": result.source,
            "resolved_tier": result.resolved_tier.value,
            "match_count": len(result.matched_terms),
            "negated_count": len(result.excluded_by_negation),
            "categories": sorted({term.category for term in result.matched_terms}),
            "latency_ms": result.scan_latency_ms,
            "lexicon_version": result.lexicon_version,
        }

        if result.resolved_tier is CrisisTier.CRITICAL:
            logger.critical("CRISIS_DETECTED", extra=fields)
        elif result.resolved_tier is CrisisTier.HIGH:
            logger.warning("CRISIS_SCAN_HIGH_RISK", extra=fields)

        if result.scan_latency_ms > self.config.max_scan_latency_ms:
            logger.warning(
                "CRISIS_SCAN_LATENCY_EXCEEDED",
                extra={
                    "latency_ms": result.scan_latency_ms,
                    "budget_ms": self.config.max_scan_latency_ms,
                    "text_length": len(text),
                }
            )

        logger.info("CRISIS_SCAN_COMPLETED", extra=fields)


_detector: Optional[CrisisDetector] = None


def get_detector() -> CrisisDetector:
    """Get the process-wide detector, creating it on first use."""
    global _detector
    if _detector is None:
        _detector = CrisisDetector(config=SafetyConfig.from_env())
    return _detector


def scan_for_crisis(text: Any, context: Optional[str] = None) -> DetectionResult:
    """Scan text with the default detector. Never raises."""
    return get_detector().scan(text, context)
