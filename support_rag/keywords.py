#!/usr/bin/env python3
"""Domain keyword detection for support queries."""

from __future__ import annotations

import re
from typing import Iterable, Optional, Pattern, Set, Tuple

# Role and organization terms that widen a store search beyond the raw query.
DEFAULT_VOCABULARY: Tuple[str, ...] = (
    "ceo",
    "chief executive",
    "president",
    "founder",
    "leadership",
    "manager",
    "management",
    "director",
    "head",
    "team",
    "staff",
    "employees",
    "pricing",
    "billing",
    "security",
    "privacy",
    "compliance",
)

# Terms that mark a question as being about the company itself.
COMPANY_TERMS: Tuple[str, ...] = (
    "company", "location", "address", "office", "headquarters", "branch",
    "data management", "policy", "procedure", "privacy", "terms",
    "about us", "contact", "phone", "email", "support",
    "business hours", "working hours", "schedule",
    "services", "products", "offerings",
    "team", "staff", "employees", "management",
    "history", "founded", "established",
    "mission", "vision", "values",
    "security", "compliance", "certification",
    "billing", "payment", "pricing", "subscription",
    "documentation", "guide", "manual", "help",
)

_WHITESPACE_RE = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.casefold()).strip()


def _term_pattern(term: str) -> Pattern[str]:
    # Multi-word terms tolerate any run of whitespace between words.
    words = [re.escape(w) for w in term.split()]
    return re.compile(r"\b" + r"\s+".join(words) + r"\b")


class KeywordMatcher:
    """Match a query against a fixed vocabulary of domain terms.

    Matching is literal: a term is reported only when it occurs as a
    whole word (or whole phrase) in the case-folded query. There is no
    synonym or semantic mapping, so "who started the company" does not
    match "founder".
    """

    def __init__(self, vocabulary: Optional[Iterable[str]] = None):
        terms = vocabulary if vocabulary is not None else DEFAULT_VOCABULARY
        self.vocabulary: Tuple[str, ...] = tuple(
            dict.fromkeys(_normalize(t) for t in terms if t and t.strip())
        )
        self._patterns = [(term, _term_pattern(term)) for term in self.vocabulary]

    def match_keywords(self, query: str) -> Set[str]:
        """Return the vocabulary terms present in `query`."""
        if not query or not query.strip():
            return set()
        normalized = _normalize(query)
        return {term for term, pattern in self._patterns if pattern.search(normalized)}

    def __repr__(self) -> str:
        return f"KeywordMatcher(terms={len(self.vocabulary)})"


_default_matcher = KeywordMatcher()


def match_keywords(query: str) -> Set[str]:
    """Match against the default vocabulary."""
    return _default_matcher.match_keywords(query)


def is_company_query(text: str) -> bool:
    """True when the text mentions company vocabulary (substring match)."""
    if not text:
        return False
    lowered = text.lower()
    return any(term in lowered for term in COMPANY_TERMS)
