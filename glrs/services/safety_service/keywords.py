"""Crisis keyword database - tiered lexicon and matching primitives.

Sources for the lexicon:
- Columbia Protocol (C-SSRS) screening questions
- PHQ-9 depression screening
- SAMHSA crisis indicators
- Clinical literature on substance use crisis and relapse

The lexicon is loaded once into an immutable KeywordDatabase indexed by tier,
then category. Nothing mutates it at runtime; a lexicon change is a new
version and a redeploy.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from glrs.shared.models import CrisisTier, InvalidTierError
from .config import ABBREVIATIONS, CLAUSE_CONJUNCTIONS, KNOWN_MISSPELLINGS, NEGATION_WORDS, SafetyConfig
from .text_normalizer import CLAUSE_BREAK

logger = logging.getLogger(__name__)


# =============================================================================
# TIER 1: CRITICAL - bypass LLM, show resources, alert coach (< 2 seconds)
# =============================================================================
TIER_1_CRITICAL: Dict[str, Tuple[str, ...]] = {
    "suicide": (
        "kill myself",
        "end my life",
        "want to die",
        "better off dead",
        "suicide",
        "suicidal",
        "end it all",
        "no reason to live",
        "planning to kill",
        "method to die",
        "way to end it",
        "take my own life",
        "finish myself",
        "not worth living",
        "goodbye forever",
        "final note",
        "suicide note",
    ),
    "self_harm": (
        "hurt myself",
        "cutting myself",
        "hurting myself",
        "burn myself",
        "harm myself",
        "self-harm",
        "self harm",
        "hit myself",
        "punish myself physically",
        "make myself bleed",
        "scars from cutting",
        "razor blade",
    ),
    "immediate_danger": (
        "have a gun",
        "have pills",
        "have a knife",
        "standing on ledge",
        "on the bridge",
        "about to jump",
        "overdose now",
        "taking pills now",
        "goodbye cruel world",
        "final act",
        "last message",
    ),
    "substance_crisis": (
        "overdose",
        "overdosing",
        "took too much",
        "cant stop using",
        "relapsed and cant stop",
        "fentanyl",
        "heroin now",
        "shooting up now",
        "need narcan",
        "not breathing well",
    ),
}

# =============================================================================
# TIER 2: HIGH - notify coach, modify AI response (< 5 minutes)
# =============================================================================
TIER_2_HIGH: Dict[str, Tuple[str, ...]] = {
    "passive_suicidal": (
        "wish i was dead",
        "wish i wasnt here",
        "dont want to wake up",
        "everyone would be better without me",
        "disappear forever",
        "wouldnt mind dying",
        "hope i dont wake up",
        "sleep forever",
        "not afraid of death",
        "ready to die",
        "tired of living",
    ),
    "historical_harm": (
        "used to cut",
        "history of self-harm",
        "urge to cut",
        "want to hurt myself",
        "thinking about cutting",
        "miss the pain",
        "considering self-harm",
        "might hurt myself",
    ),
    "hopelessness": (
        "no hope",
        "hopeless",
        "pointless",
        "nothing matters",
        "why bother",
        "no future",
        "no way out",
        "trapped",
        "cant go on",
        "exhausted with life",
        "completely alone",
        "no one cares",
        "no one would notice",
        "burden to everyone",
    ),
    "relapse_crisis": (
        "about to relapse",
        "going to use",
        "cant resist",
        "found my dealers number",
        "going to buy drugs",
        "going to drink",
        "one drink wont hurt",
        "just one hit",
        "relapsed yesterday",
        "relapsed today",
        "back on drugs",
        "drinking again",
        "using again",
    ),
    "abuse_indicators": (
        "being abused",
        "he hits me",
        "she hits me",
        "partner hurts me",
        "domestic violence",
        "afraid of my partner",
        "locked me in",
        "threatened to kill",
        "will hurt me",
        "in danger at home",
    ),
}

# =============================================================================
# TIER 3: MODERATE - daily digest to coach (24 hours)
# =============================================================================
TIER_3_MODERATE: Dict[str, Tuple[str, ...]] = {
    "concerning_mood": (
        "very depressed",
        "severely anxious",
        "panic attacks",
        "cant sleep for days",
        "not eating",
        "isolating",
        "avoiding everyone",
        "crying all day",
        "cant function",
        "cant get out of bed",
        "no energy to live",
    ),
    "substance_concerns": (
        "cravings are bad",
        "strong urges",
        "thinking about using",
        "miss getting high",
        "miss drinking",
        "triggered badly",
        "people places things",
        "near a bar",
        "dealer texted me",
        "almost bought",
        "almost drank",
    ),
    "support_issues": (
        "no sponsor",
        "sponsor ghosted me",
        "no sober friends",
        "family abandoned me",
        "fired from job",
        "kicked out",
        "homeless",
        "nowhere to go",
        "no money",
        "lost everything",
    ),
    "mental_health": (
        "hearing voices",
        "seeing things",
        "paranoid",
        "manic episode",
        "bipolar spiral",
        "schizophrenia acting up",
        "off my meds",
        "stopped medications",
        "cant afford meds",
    ),
}

# =============================================================================
# TIER 4: STANDARD - logging only
# =============================================================================
TIER_4_STANDARD: Dict[str, Tuple[str, ...]] = {
    "general_challenges": (
        "struggling",
        "hard day",
        "difficult",
        "frustrated",
        "angry",
        "sad",
        "lonely",
        "stressed",
        "overwhelmed",
        "tired",
        "exhausted",
        "disappointed",
        "worried",
        "anxious",
    ),
    "positive_indicators": (
        "sober today",
        "didnt use",
        "stayed clean",
        "went to meeting",
        "called sponsor",
        "feeling better",
        "made progress",
        "proud of myself",
        "milestone",
        "grateful",
    ),
}

TIER_TABLES: Mapping[CrisisTier, Mapping[str, Tuple[str, ...]]] = MappingProxyType({
    CrisisTier.CRITICAL: TIER_1_CRITICAL,
    CrisisTier.HIGH: TIER_2_HIGH,
    CrisisTier.MODERATE: TIER_3_MODERATE,
    CrisisTier.STANDARD: TIER_4_STANDARD,
})

# Long, distinctive single words whose typos should still match. Short words
# and phrases stay exact-only ("want to die" would otherwise match "want to
# diet", "hurt myself" would match "hurt himself").
FUZZY_TOLERANT_PHRASES = frozenset({
    "suicide",
    "suicidal",
    "overdose",
    "overdosing",
    "fentanyl",
    "hopeless",
})

# Ordinary words within one edit of a fuzzy-tolerant phrase. Lexicon phrases
# are excluded as fuzzy candidates too ("homeless" is not a typo of "hopeless").
FUZZY_NEAR_MISSES = frozenset({
    "homeless",
    "topless",
    "overdone",
    "overdoes",
    "overdoing",
})

# Life-threatening categories match even after a negation word;
# "I don't have pills, I took them" must not be suppressed.
NEGATION_INSENSITIVE_CATEGORIES = frozenset({
    "immediate_danger",
    "substance_crisis",
    "positive_indicators",
})


class MatchMode(Enum):
    """Matching strategy variants an entry can carry."""
    EXACT = "exact"     # Word-boundary phrase match
    FUZZY = "fuzzy"     # Levenshtein similarity against same-length n-grams


@dataclass(frozen=True)
class KeywordEntry:
    """One lexicon phrase with its tier, category and matching metadata.

    Every entry belongs to exactly one tier.
    """
    phrase: str
    tier: CrisisTier
    category: str
    fuzzy_tolerant: bool = False
    negation_sensitive: bool = True

    def __post_init__(self):
        if self.tier is CrisisTier.NONE:
            raise InvalidTierError("Keyword entries cannot belong to tier NONE")
        if not self.phrase or not self.phrase.strip():
            raise ValueError("Keyword phrase must be non-empty")

    @property
    def modes(self) -> Tuple[MatchMode, ...]:
        if self.fuzzy_tolerant:
            return (MatchMode.EXACT, MatchMode.FUZZY)
        return (MatchMode.EXACT,)

    @property
    def word_count(self) -> int:
        return len(self.phrase.split())

    def to_dict(self) -> Dict[str, object]:
        return {
            "phrase": self.phrase,
            "tier": self.tier.value,
            "category": self.category,
            "fuzzy_tolerant": self.fuzzy_tolerant,
            "negation_sensitive": self.negation_sensitive,
        }


class KeywordDatabase:
    """Immutable lexicon indexed by tier, then category.

    Patterns are compiled once at construction. Safe to share across
    threads; nothing is mutated after __init__.
    """

    def __init__(
        self,
        entries: Iterable[KeywordEntry],
        version: str = "",
        fuzzy_exclusions: Iterable[str] = (),
    ):
        by_tier: Dict[CrisisTier, Dict[str, List[KeywordEntry]]] = {
            tier: {} for tier in CrisisTier.keyword_tiers()
        }
        seen: Dict[str, CrisisTier] = {}

        for entry in entries:
            previous = seen.get(entry.phrase)
            if previous is not None and previous is not entry.tier:
                raise ValueError(
                    f"Keyword {entry.phrase!r} assigned to both {previous.value} and {entry.tier.value}"
                )
            seen[entry.phrase] = entry.tier
            by_tier[entry.tier].setdefault(entry.category, []).append(entry)

        self._index: Mapping[CrisisTier, Mapping[str, Tuple[KeywordEntry, ...]]] = MappingProxyType({
            tier: MappingProxyType({cat: tuple(items) for cat, items in categories.items()})
            for tier, categories in by_tier.items()
        })
        self._patterns: Mapping[str, re.Pattern] = MappingProxyType({
            phrase: create_keyword_pattern(phrase) for phrase in seen
        })
        self._fuzzy_exclusions = frozenset(fuzzy_exclusions) | frozenset(seen)
        self.version = version

        logger.info(
            "KEYWORD_DATABASE_LOADED",
            extra={
                "lexicon_version": version,
                **{f"{tier.value}_count": count for tier, count in self._counts().items()},
            }
        )

    @classmethod
    def from_tables(
        cls,
        tables: Mapping[CrisisTier, Mapping[str, Sequence[str]]] = TIER_TABLES,
        fuzzy_tolerant: Iterable[str] = FUZZY_TOLERANT_PHRASES,
        negation_insensitive_categories: Iterable[str] = NEGATION_INSENSITIVE_CATEGORIES,
        version: str = "",
        fuzzy_exclusions: Iterable[str] = FUZZY_NEAR_MISSES,
    ) -> "KeywordDatabase":
        """Build the database from category tables.

        Args:
            tables: tier -> category -> phrases
            fuzzy_tolerant: Phrases that also match near-miss spellings
            negation_insensitive_categories: Categories never suppressed by negation
            version: Lexicon version tag for audit
            fuzzy_exclusions: Real words never treated as a typo of a fuzzy phrase
        """
        fuzzy = frozenset(fuzzy_tolerant)
        insensitive = frozenset(negation_insensitive_categories)
        entries = (
            KeywordEntry(
                phrase=phrase,
                tier=CrisisTier.from_value(tier),
                category=category,
                fuzzy_tolerant=phrase in fuzzy,
                negation_sensitive=category not in insensitive,
            )
            for tier, categories in tables.items()
            for category, phrases in categories.items()
            for phrase in phrases
        )
        return cls(entries, version=version, fuzzy_exclusions=fuzzy_exclusions)

    def get_keywords_for_tier(self, tier: Union[str, CrisisTier]) -> List[KeywordEntry]:
        """Get all entries for a tier, in category order.

        Raises:
            InvalidTierError: If tier is not CRITICAL, HIGH, MODERATE or STANDARD
        """
        resolved = CrisisTier.from_value(tier)
        if resolved is CrisisTier.NONE:
            raise InvalidTierError("Tier NONE has no keywords")
        return [entry for entries in self._index[resolved].values() for entry in entries]

    def get_categories(self, tier: Union[str, CrisisTier]) -> Mapping[str, Tuple[KeywordEntry, ...]]:
        """Get the category -> entries mapping for a tier."""
        resolved = CrisisTier.from_value(tier)
        if resolved is CrisisTier.NONE:
            raise InvalidTierError("Tier NONE has no keywords")
        return self._index[resolved]

    def get_keyword_counts(self) -> Dict[str, int]:
        """Count of entries per tier, plus the total."""
        counts = {tier.value: count for tier, count in self._counts().items()}
        counts["total"] = sum(counts.values())
        return counts

    def iter_entries(self) -> Iterator[KeywordEntry]:
        """Every entry, most severe tier first."""
        for tier in CrisisTier.keyword_tiers():
            for entries in self._index[tier].values():
                yield from entries

    def pattern_for(self, entry: KeywordEntry) -> re.Pattern:
        return self._patterns[entry.phrase]

    def is_fuzzy_excluded(self, candidate: str) -> bool:
        """True for lexicon phrases and known real words near a fuzzy phrase."""
        return candidate in self._fuzzy_exclusions

    def __len__(self) -> int:
        return len(self._patterns)

    def _counts(self) -> Dict[CrisisTier, int]:
        return {
            tier: sum(len(entries) for entries in categories.values())
            for tier, categories in self._index.items()
        }


# =============================================================================
# MATCHING PRIMITIVES
# =============================================================================

def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance (insertions, deletions, substitutions) between a and b."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,                        # deletion
                current[j - 1] + 1,                     # insertion
                previous[j - 1] + (char_a != char_b),   # substitution
            ))
        previous = current
    return previous[-1]


def similarity_ratio(a: str, b: str) -> float:
    """Normalized similarity in [0, 1]: 1 - distance / longer length.

    Case-insensitive. Two empty strings are identical (1.0).
    """
    a, b = a.lower(), b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def expand_abbreviation(token: str) -> Optional[str]:
    """Map known crisis shorthand ("kms", "od", "sh") to its expanded phrase."""
    if not token:
        return None
    return ABBREVIATIONS.get(token.lower())


def correct_misspelling(token: str) -> Optional[str]:
    """Map an observed misspelling ("suicidel", "overdoze") to the lexicon word."""
    if not token:
        return None
    return KNOWN_MISSPELLINGS.get(token.lower())


def has_negation_before(
    tokens: Sequence[str],
    match_index: int,
    window_size: int = 3,
    negation_words: Iterable[str] = NEGATION_WORDS,
    clause_words: Iterable[str] = CLAUSE_CONJUNCTIONS,
) -> bool:
    """Check up to window_size tokens before match_index for a negation word.

    The scan stops at a clause break or a clause-opening conjunction, so
    negation in an earlier clause does not suppress a later match.
    """
    if window_size <= 0 or match_index <= 0:
        return False

    negations = negation_words if isinstance(negation_words, (set, frozenset)) else frozenset(negation_words)
    conjunctions = clause_words if isinstance(clause_words, (set, frozenset)) else frozenset(clause_words)
    start = max(0, match_index - window_size)
    for token in reversed(tokens[start:match_index]):
        if token == CLAUSE_BREAK or token.lower() in conjunctions:
            return False
        if token.lower() in negations:
            return True
    return False


def create_keyword_pattern(phrase: str) -> re.Pattern:
    """Compile a word-boundary-safe, case-insensitive matcher for phrase.

    Words may be separated by any whitespace. The pattern never matches
    inside a longer word: "ass" does not match "assassin", "die" does not
    match "diet" or "applied".
    """
    words = phrase.strip().split()
    if not words:
        raise ValueError("Cannot build a pattern for an empty phrase")
    body = r"\s+".join(re.escape(word) for word in words)
    return re.compile(rf"(?<![\w-]){body}(?![\w-])", re.IGNORECASE)


# =============================================================================
# DEFAULT DATABASE
# =============================================================================

_database: Optional[KeywordDatabase] = None


def get_keyword_database() -> KeywordDatabase:
    """Get the process-wide lexicon, loading it on first use."""
    global _database
    if _database is None:
        _database = KeywordDatabase.from_tables(version=SafetyConfig.from_env().lexicon_version)
    return _database


def get_keywords_for_tier(tier: Union[str, CrisisTier]) -> List[KeywordEntry]:
    """Entries for a tier from the default lexicon."""
    return get_keyword_database().get_keywords_for_tier(tier)


def get_keyword_counts() -> Dict[str, int]:
    """Per-tier entry counts from the default lexicon."""
    return get_keyword_database().get_keyword_counts()
