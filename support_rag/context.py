#!/usr/bin/env python3
"""Merge per-store results into one ranked context for the prompt."""
from __future__ import annotations

from typing import List, Optional, Sequence

from support_rag.models import KnowledgeItem, RankedContextItem

DEFAULT_BUDGET = 6


def merged_order_key(item: RankedContextItem):
    """Priority desc, then most recent content edit first."""
    return (-item.priority, -item.updated_at.timestamp())


class ContextAssembler:
    """
    Combine FAQ and document results and re-rank them together.

    Each store ranks its own results by usage; across stores the tie-break
    is freshness instead, so a just-corrected document beats a stale but
    popular FAQ of equal priority. Usage counters play no part here.
    """

    def __init__(self, budget: int = DEFAULT_BUDGET):
        if budget < 0:
            raise ValueError(f"budget must be >= 0, got {budget}")
        self.budget = budget

    def assemble(
        self,
        faq_results: Sequence[KnowledgeItem],
        document_results: Sequence[KnowledgeItem],
        budget: Optional[int] = None,
    ) -> List[RankedContextItem]:
        budget = self.budget if budget is None else budget
        if budget < 0:
            raise ValueError(f"budget must be >= 0, got {budget}")

        combined = [RankedContextItem.from_item(item) for item in faq_results]
        combined.extend(RankedContextItem.from_item(item) for item in document_results)
        combined.sort(key=merged_order_key)
        return combined[:budget]


def assemble(
    faq_results: Sequence[KnowledgeItem],
    document_results: Sequence[KnowledgeItem],
    budget: int = DEFAULT_BUDGET,
) -> List[RankedContextItem]:
    return ContextAssembler(budget).assemble(faq_results, document_results)
