"""Pytest configuration and fixtures for support assistant tests."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from support_rag.models import Completion, DocumentEntry, FAQEntry, SourceKind
from support_rag.store import InMemoryKnowledgeStore
from support_rag.usage import UsageFeedback

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom pytest markers for test categorization."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (skip with '-m \"not integration\"')"
    )


class FakeLLM:
    """Records prompts and returns a canned completion (or raises)."""

    def __init__(self, text="Here is your answer.", error=None):
        self.text = text
        self.error = error
        self.prompts = []
        self.mock = False

    def complete(self, prompt_text):
        self.prompts.append(prompt_text)
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, token_count=42, latency_ms=5, model="fake-model")

    def health_check(self):
        return {"ok": True, "details": "fake"}


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_faq():
    """Factory for FAQ entries; `age_days` sets updated_at relative to BASE_TIME."""

    def _make(item_id, title, body="", tags=(), priority=0, helpful=0, age_days=0, active=True):
        stamp = BASE_TIME - timedelta(days=age_days)
        return FAQEntry(
            id=item_id,
            title=title,
            body=body,
            tags=list(tags),
            priority=priority,
            helpful_count=helpful,
            is_active=active,
            created_at=stamp,
            updated_at=stamp,
        )

    return _make


@pytest.fixture
def make_doc():
    """Factory for document entries; `age_days` sets updated_at relative to BASE_TIME."""

    def _make(item_id, title, body="", tags=(), priority=0, accesses=0, age_days=0, active=True):
        stamp = BASE_TIME - timedelta(days=age_days)
        return DocumentEntry(
            id=item_id,
            title=title,
            body=body,
            tags=list(tags),
            priority=priority,
            access_count=accesses,
            is_active=active,
            created_at=stamp,
            updated_at=stamp,
        )

    return _make


@pytest.fixture
def faq_store(make_faq):
    return InMemoryKnowledgeStore(SourceKind.FAQ, [
        make_faq("faq-ceo", "Who is our CEO?", "Our CEO is John Smith.", tags=["ceo"], priority=8, helpful=40, age_days=30),
        make_faq("faq-password", "How do I reset my password?", "Use the Forgot Password link.", tags=["account"], priority=5),
        make_faq("faq-old-ceo", "Former CEO", "Our previous CEO retired.", priority=2, active=False),
    ])


@pytest.fixture
def document_store(make_doc):
    return InMemoryKnowledgeStore(SourceKind.DOCUMENT, [
        make_doc("doc-leadership", "Team & Management", "Our CEO is Jane Doe.", tags=["leadership"], priority=9, age_days=1),
        make_doc("doc-pricing", "Pricing", "Starter plan is $29/month.", tags=["pricing"], priority=6),
    ])


@pytest.fixture
def usage(faq_store, document_store):
    feedback = UsageFeedback({SourceKind.FAQ: faq_store, SourceKind.DOCUMENT: document_store}, max_workers=2)
    yield feedback
    feedback.shutdown(wait_for_pending=True)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def blocking_gate():
    """Event a test sets to release a deliberately slow store."""
    gate = threading.Event()
    yield gate
    gate.set()
