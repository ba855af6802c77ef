"""Tests for merging FAQ and document results into one ranked context."""

from datetime import timedelta

import pytest

from support_rag.context import DEFAULT_BUDGET, ContextAssembler, assemble
from support_rag.models import SourceKind


class TestMergedOrder:
    """Cross-store order: priority desc, then most recent edit first."""

    def test_higher_priority_document_beats_faq(self, make_faq, make_doc):
        faq = make_faq("faq-ceo", "Who is the CEO?", "John Smith", priority=8, helpful=500)
        doc = make_doc("doc-ceo", "Leadership", "Jane Doe", priority=9)
        context = assemble([faq], [doc])
        assert [c.origin_id for c in context] == ["doc-ceo", "faq-ceo"]
        assert context[0].source_kind is SourceKind.DOCUMENT
        assert context[1].source_kind is SourceKind.FAQ

    def test_equal_priority_newer_edit_wins(self, make_faq, make_doc):
        stale_popular = make_faq("faq", "Refunds", "30 days", priority=5, helpful=1000, age_days=90)
        fresh = make_doc("doc", "Refund policy", "14 days", priority=5, age_days=1)
        context = assemble([stale_popular], [fresh])
        assert [c.origin_id for c in context] == ["doc", "faq"]

    def test_usage_plays_no_part(self, make_faq):
        """Same priority and age: input order stands regardless of usage counters."""
        quiet = make_faq("quiet", "A", priority=5, helpful=0, age_days=3)
        busy = make_faq("busy", "B", priority=5, helpful=900, age_days=3)
        assert [c.origin_id for c in assemble([quiet, busy], [])] == ["quiet", "busy"]

    def test_offsetless_timestamps_compare_as_utc(self, make_faq, make_doc, base_time):
        faq = make_faq("faq", "Refunds", priority=5)
        faq.updated_at = (base_time + timedelta(hours=1)).replace(tzinfo=None)
        doc = make_doc("doc", "Refund policy", priority=5)
        context = assemble([faq], [doc])
        assert [c.origin_id for c in context] == ["faq", "doc"]
        assert context[0].updated_at.tzinfo is not None

    def test_ranked_item_fields(self, make_doc, base_time):
        doc = make_doc("doc-1", "Title", "Body", priority=4)
        (item,) = assemble([], [doc])
        assert item.title == "Title"
        assert item.body == "Body"
        assert item.priority == 4
        assert item.updated_at == base_time
        assert item.origin_id == "doc-1"


class TestBudget:
    """Truncation to the context budget."""

    @pytest.mark.parametrize("n_faqs,n_docs,budget", [
        (0, 0, 6), (2, 1, 6), (3, 3, 6), (3, 3, 4), (5, 5, 6), (2, 2, 0),
    ])
    def test_length_is_min_of_inputs_and_budget(self, make_faq, make_doc, n_faqs, n_docs, budget):
        faqs = [make_faq(f"f{i}", f"F{i}", priority=i) for i in range(n_faqs)]
        docs = [make_doc(f"d{i}", f"D{i}", priority=i) for i in range(n_docs)]
        context = ContextAssembler(budget).assemble(faqs, docs)
        assert len(context) == min(n_faqs + n_docs, budget)

    def test_truncation_keeps_the_top(self, make_faq, make_doc):
        faqs = [make_faq(f"f{p}", "F", priority=p) for p in (1, 8, 3)]
        docs = [make_doc(f"d{p}", "D", priority=p) for p in (9, 2, 7)]
        context = assemble(faqs, docs, budget=3)
        assert [c.origin_id for c in context] == ["d9", "f8", "d7"]

    def test_default_budget(self):
        assert DEFAULT_BUDGET == 6
        assert ContextAssembler().budget == 6

    def test_per_call_budget_override(self, make_faq):
        faqs = [make_faq(f"f{i}", "F") for i in range(4)]
        assert len(ContextAssembler(6).assemble(faqs, [], budget=2)) == 2

    def test_negative_budget_rejected(self):
        with pytest.raises(ValueError):
            ContextAssembler(-1)
        with pytest.raises(ValueError):
            ContextAssembler().assemble([], [], budget=-2)
