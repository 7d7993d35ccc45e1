"""
Tests for name similarity scoring
"""

import pytest

from matching.similarity import name_similarity, prepare_name


class TestNameSimilarity:
    """Normalized Levenshtein similarity"""

    @pytest.mark.parametrize("name", ["Nimal Perera", "A", "සුනිල් ශාන්ත", "முருகன்"])
    def test_identical_names_score_one(self, name):
        assert name_similarity(name, name) == 1.0

    def test_empty_inputs(self):
        assert name_similarity("", "") == 1.0
        assert name_similarity("", "abc") == 0.0
        assert name_similarity("abc", "") == 0.0
        assert name_similarity(None, None) == 1.0
        assert name_similarity(None, "abc") == 0.0

    def test_whitespace_only_is_empty(self):
        assert name_similarity("   ", "") == 1.0
        assert name_similarity("   ", "abc") == 0.0

    @pytest.mark.parametrize("a,b", [
        ("Nimal Perera", "Nimal Perara"),
        ("Kamal", "Kamala"),
        ("Fathima Rizna", "Rizna Fathima"),
        ("", "Sunil"),
    ])
    def test_symmetric(self, a, b):
        assert name_similarity(a, b) == name_similarity(b, a)

    def test_one_character_difference(self):
        """Perara vs Perera: distance 1 over 12 characters"""
        assert name_similarity("Nimal Perara", "Nimal Perera") == pytest.approx(1 - 1 / 12)
        assert name_similarity("Nimal Perara", "Nimal Perera") == pytest.approx(0.917, abs=1e-3)

    def test_case_and_surrounding_whitespace_ignored(self):
        assert name_similarity("  NIMAL perera ", "Nimal Perera") == 1.0

    def test_unicode_composition_ignored(self):
        """Decomposed and precomposed forms compare equal"""
        assert name_similarity("Jose\u0301", "Jos\u00e9") == 1.0

    def test_completely_different(self):
        assert name_similarity("abc", "xyz") == 0.0

    def test_score_in_range(self):
        score = name_similarity("Sunil Shantha", "Sunethra")
        assert 0.0 <= score <= 1.0


class TestPrepareName:
    def test_casefold_and_strip(self):
        assert prepare_name("  STRASSE ") == "strasse"

    def test_none(self):
        assert prepare_name(None) == ""

    def test_internal_whitespace_collapsed(self):
        assert prepare_name("Nimal \t  Perera") == "nimal perera"
        assert name_similarity("Nimal  Perera", "Nimal Perera") == 1.0
