#!/usr/bin/env python3
"""
Per-store relevance search.

An item is a candidate when the raw query, or any domain keyword found in
the query, occurs (case-insensitively) in its title, body or one of its
tags. Candidates are ranked inside the store by priority, then by the
store's own usage counter.
"""
from __future__ import annotations

import time
from typing import TYPE_CHECKING, Iterable, List, Optional

from support_rag.keywords import KeywordMatcher
from support_rag.logging_config import log_search
from support_rag.models import KnowledgeItem

if TYPE_CHECKING:
    from support_rag.store import KnowledgeStore

DEFAULT_LIMIT = 3


def _contains(item: KnowledgeItem, needle: str) -> bool:
    if needle in item.title.casefold() or needle in item.body.casefold():
        return True
    return any(needle in tag.casefold() for tag in item.tags)


def store_order_key(item: KnowledgeItem):
    """Priority desc, then usage counter desc."""
    return (-item.priority, -item.usage_metric)


class RelevanceSearch:
    """Keyword/containment search over one knowledge store."""

    def __init__(self, matcher: Optional[KeywordMatcher] = None):
        self.matcher = matcher or KeywordMatcher()

    def needles(self, query: str) -> List[str]:
        """Case-folded strings any of which makes an item a candidate."""
        stripped = (query or "").strip()
        if not stripped:
            return []
        terms = [stripped.casefold()]
        terms.extend(sorted(self.matcher.match_keywords(stripped)))
        return list(dict.fromkeys(terms))

    def filter_candidates(self, items: Iterable[KnowledgeItem], query: str) -> List[KnowledgeItem]:
        return self._matching(items, self.needles(query))

    @staticmethod
    def _matching(items: Iterable[KnowledgeItem], needles: List[str]) -> List[KnowledgeItem]:
        if not needles:
            return []
        return [
            item for item in items
            if item.is_active and any(_contains(item, n) for n in needles)
        ]

    def search(self, store: "KnowledgeStore", query: str, limit: int = DEFAULT_LIMIT) -> List[KnowledgeItem]:
        """
        Return up to `limit` active candidates from `store`.

        Args:
            store: Store to read a snapshot from
            query: Raw user text; empty or whitespace-only matches nothing
            limit: Maximum number of results (>= 0)

        Returns:
            Items ordered by (priority desc, usage counter desc); ties keep
            the store's snapshot order
        """
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        if limit == 0 or not (query or "").strip():
            return []

        t0 = time.time()
        needles = self.needles(query)
        candidates = self._matching(store.active_items(), needles)
        # sorted() is stable, so equal keys stay in snapshot order
        ranked = sorted(candidates, key=store_order_key)[:limit]

        log_search(
            store=store.name,
            query=query,
            latency_ms=int((time.time() - t0) * 1000),
            results_count=len(ranked),
            limit=limit,
            keywords=needles[1:],
        )
        return ranked
