"""Safety Service configuration and matching policy tables.

Thresholds follow the tuning used for the recovery-coach lexicon:
- fuzzy threshold catches single-typo misspellings of fuzzy-tolerant words
- a three-token negation window covers "not going to", "i do not", "never ever"
"""
import os
from dataclasses import dataclass
from typing import Dict, FrozenSet


@dataclass(frozen=True)
class SafetyConfig:
    """Configuration for crisis scanning behavior."""

    # Minimum Levenshtein similarity for a fuzzy-tolerant keyword to match
    fuzzy_match_threshold: float = 0.82

    # Tokens checked before a match for a negation word
    negation_window: int = 3

    # Tokens kept on either side of a match in the alert context excerpt
    context_window: int = 10

    # Longest excerpt of the scanned text retained on a result or alert
    max_excerpt_chars: int = 500

    # Maximum latency allowed for a scan before a warning is logged
    max_scan_latency_ms: int = 50

    # Version tracking for audit trail
    lexicon_version: str = "2025.11.08"

    def __post_init__(self):
        if not 0.0 < self.fuzzy_match_threshold <= 1.0:
            raise ValueError(
                f"fuzzy_match_threshold must be in (0, 1], got {self.fuzzy_match_threshold}"
            )
        if self.negation_window < 0:
            raise ValueError(f"negation_window must be >= 0, got {self.negation_window}")

    @classmethod
    def from_env(cls) -> "SafetyConfig":
        """Create config from environment variables.

        Environment variables:
            FUZZY_MATCH_THRESHOLD: Similarity threshold (default 0.82)
            NEGATION_WINDOW: Negation token window (default 3)
            LEXICON_VERSION: Lexicon version tag for audit
        """
        return cls(
            fuzzy_match_threshold=float(os.getenv("FUZZY_MATCH_THRESHOLD", "0.82")),
            negation_window=int(os.getenv("NEGATION_WINDOW", "3")),
            lexicon_version=os.getenv("LEXICON_VERSION", cls.lexicon_version),
        )


# Tokens that negate a following crisis phrase. Apostrophes are folded out
# during normalization, so "don't" arrives here as "dont".
NEGATION_WORDS: FrozenSet[str] = frozenset({
    "not",
    "no",
    "never",
    "dont",
    "doesnt",
    "didnt",
    "havent",
    "hasnt",
    "wasnt",
    "werent",
    "wont",
    "wouldnt",
    "isnt",
    "arent",
    "nor",
    "without",
    "stopped",
    "quit",
})

# Conjunctions that open a new clause; negation before one does not carry
# over ("I didnt sleep and want to die"). "or" and "nor" keep the scope.
CLAUSE_CONJUNCTIONS: FrozenSet[str] = frozenset({
    "and",
    "but",
    "though",
    "although",
    "because",
    "however",
    "except",
})

# Shorthand expanded before matching so abbreviated crisis language is not missed
ABBREVIATIONS: Dict[str, str] = {
    "kms": "kill myself",
    "od": "overdose",
    "o.d.": "overdose",
    "o.d": "overdose",
    "si": "suicidal ideation",
    "sh": "self-harm",
    "dv": "domestic violence",
    "ctb": "end my life",
}

# Observed misspellings mapped to the canonical lexicon word
KNOWN_MISSPELLINGS: Dict[str, str] = {
    "suicidel": "suicidal",
    "suicidial": "suicidal",
    "sucidal": "suicidal",
    "siucidal": "suicidal",
    "sucide": "suicide",
    "suicid": "suicide",
    "overdoze": "overdose",
    "ovrdose": "overdose",
    "overdos": "overdose",
    "depresion": "depression",
    "deppression": "depression",
    "depresssion": "depression",
    "anxeity": "anxiety",
    "anxety": "anxiety",
    "anixety": "anxiety",
    "relaps": "relapse",
    "relapce": "relapse",
    "relpase": "relapse",
}


# Static responses substituted for (or prepended to) the AI reply
CRISIS_RESPONSES: Dict[str, str] = {
    "critical": (
        "I'm really concerned about what you've shared. Your safety matters most right now.\n\n"
        "Please reach out to one of these resources immediately:\n\n"
        "- 988 Suicide & Crisis Lifeline - Call or text 988 (24/7)\n"
        "- Crisis Text Line - Text HOME to 741741\n"
        "- 911 - For immediate emergencies\n\n"
        "Your coach has been notified and will reach out to you soon.\n\n"
        "You don't have to face this alone. Help is available right now."
    ),
    "high": (
        "I hear that you're going through a really difficult time right now. "
        "Thank you for trusting me with this.\n\n"
        "Remember, you're not alone in this journey. If you ever feel overwhelmed, "
        "these resources are available 24/7:\n"
        "- 988 Suicide & Crisis Lifeline (call or text)\n"
        "- Crisis Text Line (text HOME to 741741)\n\n"
        "Your coach cares about you and is here to support you. Would you like to try "
        "a grounding exercise together, or would you prefer to talk through what's happening?"
    ),
    "moderate": (
        "I can tell things have been challenging lately. It's okay to have hard days - "
        "recovery isn't linear.\n\n"
        "Have you been able to connect with your sponsor or coach recently? Sometimes "
        "talking through these feelings can really help.\n\n"
        "What's one small thing you could do right now to take care of yourself?"
    ),
}
