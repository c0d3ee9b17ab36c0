"""Tests for the keyword database and matching primitives."""
import pytest

from glrs.shared.models import CrisisTier, InvalidTierError
from glrs.services.safety_service.keywords import (
    FUZZY_TOLERANT_PHRASES,
    TIER_TABLES,
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
from glrs.services.safety_service.text_normalizer import CLAUSE_BREAK, TextNormalizer


class TestKeywordEntry:
    def test_none_tier_rejected(self):
        with pytest.raises(InvalidTierError):
            KeywordEntry(phrase="anything", tier=CrisisTier.NONE, category="x")

    def test_empty_phrase_rejected(self):
        with pytest.raises(ValueError):
            KeywordEntry(phrase="  ", tier=CrisisTier.HIGH, category="x")

    def test_modes(self):
        exact = KeywordEntry(phrase="kill myself", tier=CrisisTier.CRITICAL, category="suicide")
        fuzzy = KeywordEntry(
            phrase="suicidal", tier=CrisisTier.CRITICAL, category="suicide", fuzzy_tolerant=True
        )
        assert exact.modes == (MatchMode.EXACT,)
        assert fuzzy.modes == (MatchMode.EXACT, MatchMode.FUZZY)

    def test_word_count(self):
        entry = KeywordEntry(phrase="no reason to live", tier=CrisisTier.CRITICAL, category="suicide")
        assert entry.word_count == 4


class TestKeywordDatabase:
    def test_default_lexicon_loaded(self):
        database = get_keyword_database()
        counts = database.get_keyword_counts()

        for tier in CrisisTier.keyword_tiers():
            assert counts[tier.value] > 0
        assert counts["total"] == sum(counts[t.value] for t in CrisisTier.keyword_tiers())
        assert len(database) == counts["total"]

    def test_every_phrase_in_exactly_one_tier(self):
        seen = {}
        for tier, categories in TIER_TABLES.items():
            for phrases in categories.values():
                for phrase in phrases:
                    assert seen.setdefault(phrase, tier) is tier

    def test_duplicate_across_tiers_rejected(self):
        with pytest.raises(ValueError, match="assigned to both"):
            KeywordDatabase.from_tables({
                CrisisTier.CRITICAL: {"a": ("same phrase",)},
                CrisisTier.HIGH: {"b": ("same phrase",)},
            })

    def test_get_keywords_for_tier(self):
        critical = get_keywords_for_tier("critical")
        assert all(entry.tier is CrisisTier.CRITICAL for entry in critical)
        assert "kill myself" in {entry.phrase for entry in critical}

    def test_get_keywords_for_none_tier_rejected(self):
        with pytest.raises(InvalidTierError):
            get_keywords_for_tier(CrisisTier.NONE)

    def test_get_keywords_for_unknown_tier_rejected(self):
        with pytest.raises(InvalidTierError):
            get_keywords_for_tier("severe")

    def test_categories(self):
        categories = get_keyword_database().get_categories(CrisisTier.HIGH)
        assert "relapse_crisis" in categories
        assert "using again" in {entry.phrase for entry in categories["relapse_crisis"]}

    def test_iter_entries_most_severe_first(self):
        tiers = [entry.tier for entry in get_keyword_database().iter_entries()]
        assert tiers == sorted(tiers, reverse=True)

    def test_fuzzy_tolerant_phrases_are_single_words(self):
        for phrase in FUZZY_TOLERANT_PHRASES:
            assert len(phrase.split()) == 1

    def test_negation_insensitive_categories(self):
        database = get_keyword_database()
        have_pills = next(e for e in database.iter_entries() if e.phrase == "have pills")
        kill_myself = next(e for e in database.iter_entries() if e.phrase == "kill myself")
        assert have_pills.negation_sensitive is False
        assert kill_myself.negation_sensitive is True

    def test_phrases_are_already_canonical(self):
        """Lexicon phrases must survive normalization unchanged to be matchable."""
        normalizer = TextNormalizer()
        for entry in get_keyword_database().iter_entries():
            assert normalizer.tokenize(entry.phrase, expand=False).text == entry.phrase

    def test_module_counts_match_database(self):
        assert get_keyword_counts() == get_keyword_database().get_keyword_counts()

    def test_version_recorded(self):
        database = KeywordDatabase.from_tables(version="test-1")
        assert database.version == "test-1"

    def test_fuzzy_exclusions(self):
        database = KeywordDatabase.from_tables()

        assert database.is_fuzzy_excluded("homeless")
        assert database.is_fuzzy_excluded("overdone")
        assert not database.is_fuzzy_excluded("suicdal")

    def test_custom_fuzzy_exclusions(self):
        database = KeywordDatabase.from_tables(fuzzy_exclusions=["overdue"])

        assert database.is_fuzzy_excluded("overdue")
        assert not database.is_fuzzy_excluded("overdone")


class TestKeywordPattern:
    @pytest.mark.parametrize("phrase,text", [
        ("want to die", "i want to die"),
        ("want to die", "I WANT TO DIE"),
        ("want to die", "want   to\tdie"),
        ("self-harm", "thinking about self-harm again"),
        ("sad", "so sad | really"),
    ])
    def test_matches(self, phrase, text):
        assert create_keyword_pattern(phrase).search(text)

    @pytest.mark.parametrize("phrase,text", [
        ("want to die", "i want to diet"),
        ("die", "i applied for it"),
        ("sad", "the crusade continues"),
        ("trapped", "untrapped"),
        ("hopeless", "hopelessness"),
        ("self-harm", "self-harming"),
        ("sad", "sad-faced"),
    ])
    def test_never_matches_inside_words(self, phrase, text):
        assert create_keyword_pattern(phrase).search(text) is None

    def test_empty_phrase_rejected(self):
        with pytest.raises(ValueError):
            create_keyword_pattern("   ")


class TestLevenshtein:
    @pytest.mark.parametrize("a,b,distance", [
        ("", "", 0),
        ("abc", "", 3),
        ("", "abc", 3),
        ("kitten", "sitting", 3),
        ("suicide", "suicide", 0),
        ("suicide", "sucide", 1),
        ("flaw", "lawn", 2),
    ])
    def test_distance(self, a, b, distance):
        assert levenshtein_distance(a, b) == distance

    def test_symmetric(self):
        assert levenshtein_distance("overdose", "ovrdse") == levenshtein_distance("ovrdse", "overdose")

    def test_similarity_ratio(self):
        assert similarity_ratio("", "") == 1.0
        assert similarity_ratio("Suicide", "suicide") == 1.0
        assert similarity_ratio("suicdal", "suicidal") == pytest.approx(1 - 1 / 8)
        assert similarity_ratio("abc", "xyz") == 0.0


class TestNegation:
    def test_negation_within_window(self):
        tokens = ["i", "dont", "want", "to", "die"]
        assert has_negation_before(tokens, 2)

    def test_negation_outside_window(self):
        tokens = ["not", "a", "b", "c", "want", "to", "die"]
        assert not has_negation_before(tokens, 4, window_size=3)

    def test_clause_break_stops_scan(self):
        tokens = ["no", CLAUSE_BREAK, "i", "want", "to", "die"]
        assert not has_negation_before(tokens, 3)

    def test_conjunction_stops_scan(self):
        tokens = ["i", "didnt", "sleep", "and", "want", "to", "die"]
        assert not has_negation_before(tokens, 4)
        assert not has_negation_before(["not", "but", "die"], 2)

    def test_custom_clause_words(self):
        tokens = ["not", "and", "die"]
        assert has_negation_before(tokens, 2, clause_words=[])

    def test_match_at_start(self):
        assert not has_negation_before(["die"], 0)

    def test_zero_window(self):
        assert not has_negation_before(["not", "die"], 1, window_size=0)

    def test_custom_negation_words(self):
        assert has_negation_before(["hardly", "die"], 1, negation_words=["hardly"])


class TestExpandAbbreviation:
    def test_known(self):
        assert expand_abbreviation("kms") == "kill myself"
        assert expand_abbreviation("OD") == "overdose"

    def test_unknown(self):
        assert expand_abbreviation("lol") is None
        assert expand_abbreviation("") is None


class TestCorrectMisspelling:
    def test_known(self):
        assert correct_misspelling("suicidel") == "suicidal"
        assert correct_misspelling("Overdoze") == "overdose"

    def test_unknown(self):
        assert correct_misspelling("suicidal") is None
        assert correct_misspelling("") is None
