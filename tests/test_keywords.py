"""Tests for domain keyword detection."""

import pytest

from support_rag.keywords import KeywordMatcher, is_company_query, match_keywords


class TestKeywordMatcher:
    """Literal whole-word matching against the vocabulary."""

    def test_matches_case_insensitively(self):
        assert "ceo" in match_keywords("Who is the CEO?")

    def test_multiword_term_tolerates_extra_whitespace(self):
        assert "chief executive" in match_keywords("Who is the Chief   Executive here?")

    @pytest.mark.parametrize("query", ["", "   ", "\n\t"])
    def test_blank_query_matches_nothing(self, query):
        assert match_keywords(query) == set()

    @pytest.mark.parametrize("query,absent", [
        ("Where are your headquarters?", "head"),
        ("Do you have CEOs on staff?", "ceo"),
        ("Talk to the managers", "manager"),
    ])
    def test_partial_words_do_not_match(self, query, absent):
        assert absent not in match_keywords(query)

    def test_no_semantic_mapping(self):
        """'started the company' is not the word 'founder'."""
        keywords = match_keywords("Who started the company?")
        assert "founder" not in keywords
        assert keywords == set()

    def test_multiple_terms(self):
        assert match_keywords("Security and billing questions for the team") == {"security", "billing", "team"}

    def test_custom_vocabulary(self):
        matcher = KeywordMatcher(["Refund", "  ", "refund", "return policy"])
        assert matcher.vocabulary == ("refund", "return policy")
        assert matcher.match_keywords("What is your RETURN policy for a refund?") == {"refund", "return policy"}

    def test_punctuation_boundaries(self):
        assert match_keywords("pricing?") == {"pricing"}


class TestCompanyQuery:
    """Company vocabulary flag reported in answer metadata."""

    def test_company_terms(self):
        assert is_company_query("Where is your office located?")
        assert is_company_query("What is the subscription price?")

    def test_unrelated_text(self):
        assert not is_company_query("My screen is blank")
        assert not is_company_query("")
