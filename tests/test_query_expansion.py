"""
Tests for retrieval query expansion.
"""

import pytest

from replyguard.core.query_expansion import (
    QueryExpansion,
    detect_concepts,
    expand_query,
    extract_terms,
    find_synonyms,
)


def test_extract_terms_skips_stop_words_and_short_words():
    assert extract_terms("I am so tired of feeling tired") == ["tired", "feeling"]


def test_find_synonyms_direct_and_reverse():
    assert find_synonyms("stressed")[:2] == ["pressured", "tense"]
    # a synonym maps back to its key first
    assert find_synonyms("counseling")[0] == "therapy"
    assert find_synonyms("spreadsheet") == []


def test_detect_concepts():
    concepts = detect_concepts("I had a panic attack and I can't sleep")
    assert "anxiety" in concepts
    assert "sleep" in concepts


def test_expand_query_adds_synonyms_and_concepts():
    expansion = expand_query("I feel so anxious and stressed lately")

    assert expansion.topics == ["feel", "anxious", "stressed", "lately"]
    assert "pressured" in expansion.expanded_terms
    assert "anxiety" in expansion.concepts
    assert "anxiety" in expansion.expanded_terms


def test_expand_query_caps_additions():
    expansion = expand_query("depressed angry", max_expanded_terms=2)
    assert expansion.topics == ["depressed", "angry"]
    assert len(expansion.expanded_terms) == 4


def test_expand_query_uses_context():
    expansion = expand_query("anxious", context=["my sister visited yesterday"])
    assert "sister" in expansion.expanded_terms
    assert "visited" in expansion.expanded_terms


def test_term_set_is_stemmed():
    expansion = QueryExpansion("breathing exercises", expanded_terms=["breathing", "exercises"])
    assert expansion.term_set() == {"breath", "exercis"}
    assert expansion.expanded_query == "breathing exercises"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
