"""Text normalization for crisis scanning.

Turns raw member text into a canonical token stream:
- styled unicode and invisible characters folded away
- apostrophes removed ("don't" -> "dont") so negations are single tokens
- leetspeak undone inside mixed tokens (k1ll -> kill)
- dotted/dashed single letters joined (k.i.l.l -> kill, o.d. -> od)
- abbreviations and known misspellings expanded token by token
- clause punctuation kept as a CLAUSE_BREAK token so negation does not
  leak across sentences ("No. I want to die" is not negated)

Normalization never raises for string input.
"""
import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from .config import ABBREVIATIONS, KNOWN_MISSPELLINGS

logger = logging.getLogger(__name__)


CLAUSE_BREAK = "|"

# Leetspeak character mappings (numbers/symbols -> letters)
LEETSPEAK_MAP: Dict[str, str] = {
    "0": "o",
    "1": "i",
    "3": "e",
    "4": "a",
    "5": "s",
    "7": "t",
    "8": "b",
    "@": "a",
    "$": "s",
    "!": "i",
}

# Unicode mathematical/styled letter ranges mapped back to ASCII
UNICODE_LETTER_RANGES: Dict[str, tuple] = {
    "math_bold_upper": (0x1D400, 0x1D419, ord("A")),
    "math_bold_lower": (0x1D41A, 0x1D433, ord("a")),
    "math_italic_upper": (0x1D434, 0x1D44D, ord("A")),
    "math_italic_lower": (0x1D44E, 0x1D467, ord("a")),
    "math_double_upper": (0x1D538, 0x1D551, ord("A")),
    "math_double_lower": (0x1D552, 0x1D56B, ord("a")),
    "circled_upper": (0x24B6, 0x24CF, ord("A")),
    "circled_lower": (0x24D0, 0x24E9, ord("a")),
    "fullwidth_upper": (0xFF21, 0xFF3A, ord("A")),
    "fullwidth_lower": (0xFF41, 0xFF5A, ord("a")),
}

# Zero-width and invisible characters
STRIP_CHARS: FrozenSet[str] = frozenset({
    "\u200b",  # Zero-width space
    "\u200c",  # Zero-width non-joiner
    "\u200d",  # Zero-width joiner
    "\ufeff",  # Byte order mark
    "\u00ad",  # Soft hyphen
    "\u2060",  # Word joiner
})

APOSTROPHES: FrozenSet[str] = frozenset({"'", "\u2019", "\u2018", "`", "\u02bc"})

CLAUSE_PUNCTUATION: FrozenSet[str] = frozenset({".", ",", ";", ":", "!", "?", "\u2026"})

_WORD_PATTERN = re.compile(r"[a-z0-9]+(?:-[a-z0-9]+)*")
_SEPARATOR_PATTERN = re.compile(r"\b([a-z])[\.\-_]+(?=[a-z]\b)")
_NEWLINE_LETTER_PATTERN = re.compile(r"\b([a-z])[\n\r]+(?=[a-z]\b)")
_LEET_CHARS = frozenset(LEETSPEAK_MAP)


@dataclass(frozen=True)
class NormalizedText:
    """Canonical token stream of a scanned message.

    Attributes:
        tokens: Tokens in order, including CLAUSE_BREAK markers
        text: Tokens joined by single spaces (what exact patterns run against)
    """
    tokens: Tuple[str, ...]

    @property
    def text(self) -> str:
        return " ".join(self.tokens)

    def token_index_at(self, char_offset: int) -> int:
        """Map a character offset in `text` to its token index."""
        return self.text.count(" ", 0, char_offset)

    def __bool__(self) -> bool:
        return any(token != CLAUSE_BREAK for token in self.tokens)


class TextNormalizer:
    """Normalizes member text into canonical tokens.

    Handles leetspeak, unicode substitution, letter separation, zero-width
    characters, apostrophe folding, abbreviations and common misspellings.
    """

    def __init__(
        self,
        abbreviations: Optional[Mapping[str, str]] = None,
        misspellings: Optional[Mapping[str, str]] = None,
    ):
        self._abbreviations = dict(ABBREVIATIONS if abbreviations is None else abbreviations)
        self._misspellings = dict(KNOWN_MISSPELLINGS if misspellings is None else misspellings)

        logger.info(
            "TEXT_NORMALIZER_INITIALIZED",
            extra={
                "leetspeak_mappings": len(LEETSPEAK_MAP),
                "unicode_ranges": len(UNICODE_LETTER_RANGES),
                "abbreviations": len(self._abbreviations),
                "misspellings": len(self._misspellings),
            }
        )

    def normalize(self, text: str) -> str:
        """Normalize text to its canonical space-joined form."""
        return self.tokenize(text).text

    def tokenize(self, text: str, expand: bool = True) -> NormalizedText:
        """Normalize and tokenize text.

        Args:
            text: Raw input text
            expand: Whether to expand abbreviations and misspellings
                (disabled when normalizing lexicon phrases themselves)

        Returns:
            NormalizedText with canonical tokens
        """
        if not text:
            return NormalizedText(tokens=())

        result = self._strip_invisible(text)
        result = self._normalize_unicode(result)
        result = self._fold_apostrophes(result)
        result = result.lower()
        result = self._remove_letter_separators(result)

        tokens: List[str] = []
        for chunk in result.split():
            self._append_chunk(chunk, tokens, expand)

        while tokens and tokens[-1] == CLAUSE_BREAK:
            tokens.pop()
        return NormalizedText(tokens=tuple(tokens))

    def expand_abbreviation(self, token: str) -> Optional[str]:
        """Return the crisis phrase a shorthand token stands for, or None."""
        if not token:
            return None
        return self._abbreviations.get(token.lower())

    def correct_misspelling(self, token: str) -> Optional[str]:
        """Return the canonical spelling for a known misspelling, or None."""
        if not token:
            return None
        return self._misspellings.get(token.lower())

    def _append_chunk(self, chunk: str, tokens: List[str], expand: bool) -> None:
        """Tokenize one whitespace-delimited chunk into `tokens`."""
        clause_ends = chunk[-1] in CLAUSE_PUNCTUATION

        if expand:
            # Dotted shorthand ("o.d.") owns its trailing dot
            bare = chunk.strip("\"()[]{}")
            expanded = self.expand_abbreviation(bare)
            if expanded is not None and bare.endswith("."):
                clause_ends = False
            if expanded is None:
                expanded = self.expand_abbreviation(chunk.strip("\"()[]{}.,;:!?*"))
            if expanded is not None:
                tokens.extend(expanded.split())
                if clause_ends:
                    tokens.append(CLAUSE_BREAK)
                return

        core = chunk.strip("\"()[]{}.,;:!?\u2026*")
        core = self._convert_leetspeak(core)

        words = _WORD_PATTERN.findall(core)
        # Shorthand only counts as a whole chunk: "sh*t" is not "sh"
        whole = len(words) == 1 and words[0] == core
        for word in words:
            if expand:
                expanded = self.expand_abbreviation(word) if whole else None
                if expanded is not None:
                    tokens.extend(expanded.split())
                    continue
                word = self.correct_misspelling(word) or word
            tokens.append(word)

        if clause_ends and tokens and tokens[-1] != CLAUSE_BREAK:
            tokens.append(CLAUSE_BREAK)

    def _strip_invisible(self, text: str) -> str:
        return "".join(c for c in text if c not in STRIP_CHARS)

    def _normalize_unicode(self, text: str) -> str:
        """Convert unicode styled letters to ASCII equivalents."""
        result = []
        for char in text:
            code_point = ord(char)
            if code_point < 128:
                result.append(char)
                continue

            for start, end, base in UNICODE_LETTER_RANGES.values():
                if start <= code_point <= end:
                    result.append(chr(base + (code_point - start)))
                    break
            else:
                decomposed = unicodedata.normalize("NFKD", char)
                ascii_only = "".join(
                    c for c in decomposed
                    if unicodedata.category(c) != "Mn" and ord(c) < 128
                )
                result.append(ascii_only if ascii_only else char)

        return "".join(result)

    def _fold_apostrophes(self, text: str) -> str:
        return "".join(c for c in text if c not in APOSTROPHES)

    def _convert_leetspeak(self, chunk: str) -> str:
        """Undo leetspeak only inside tokens that mix letters and leet characters.

        Plain numbers ("90 days", "24/7") are left alone.
        """
        if not any(c.isalpha() for c in chunk):
            return chunk
        if not any(c in _LEET_CHARS for c in chunk):
            return chunk
        return "".join(LEETSPEAK_MAP.get(c, c) for c in chunk)

    def _remove_letter_separators(self, text: str) -> str:
        """Join single letters separated by punctuation (k.i.l.l -> kill).

        Only affects isolated single letters, not normal words.
        """
        text = _SEPARATOR_PATTERN.sub(r"\1", text)
        return _NEWLINE_LETTER_PATTERN.sub(r"\1", text)


_normalizer: Optional[TextNormalizer] = None


def get_normalizer() -> TextNormalizer:
    """Get the singleton TextNormalizer instance."""
    global _normalizer
    if _normalizer is None:
        _normalizer = TextNormalizer()
    return _normalizer


def normalize_text(text: str) -> str:
    """Convenience function to normalize text."""
    return get_normalizer().normalize(text)
