"""
Pydantic Data Models for the support assistant

Provides structured, type-safe data definitions for:
- Knowledge items (FAQ entries and company documents)
- Ranked context handed to the prompt builder
- LLM completions and pipeline answers
- HTTP request and response bodies
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PRIORITY_MIN = 0
PRIORITY_MAX = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Timestamps without an offset are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp_priority(value: Any) -> int:
    """Coerce to int and clamp into [PRIORITY_MIN, PRIORITY_MAX]."""
    return max(PRIORITY_MIN, min(PRIORITY_MAX, int(value)))


# ============================================================================
# Enums
# ============================================================================


class SourceKind(str, Enum):
    """Which knowledge store an item came from."""
    FAQ = "FAQ"
    DOCUMENT = "Document"


class DocumentType(str, Enum):
    DOCUMENT = "document"
    POLICY = "policy"
    PROCEDURE = "procedure"
    FAQ = "faq"
    KNOWLEDGE_BASE = "knowledge_base"
    OTHER = "other"


# ============================================================================
# Knowledge Items
# ============================================================================


class KnowledgeItem(BaseModel):
    """
    Searchable unit shared by FAQ entries and company documents.

    `priority` is clamped on every write (construction and assignment).
    `updated_at` tracks content edits only; usage writes go to
    `last_accessed_at` so they never look like a fresh edit.
    """

    model_config = ConfigDict(validate_assignment=True)

    source_kind: ClassVar[SourceKind]
    usage_field: ClassVar[str]
    counter_fields: ClassVar[frozenset]

    id: str = Field(..., min_length=1, description="Opaque unique identifier")
    title: str = Field(..., description="Question text or document title")
    body: str = Field(..., description="Answer text or document content")
    tags: List[str] = Field(default_factory=list, description="Lowercase tags, set semantics")
    priority: int = Field(default=0, description="Administrator ranking signal, 0-10")
    is_active: bool = Field(default=True, description="Inactive items are invisible to search")
    category: str = Field(default="general", max_length=100)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_accessed_at: Optional[datetime] = Field(default=None)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        return clamp_priority(value)

    @field_validator("created_at", "updated_at", "last_accessed_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> List[str]:
        if value is None:
            return []
        seen: List[str] = []
        for tag in value:
            tag = str(tag).strip().lower()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    @property
    def usage_metric(self) -> int:
        """Secondary ranking key inside the item's own store."""
        return int(getattr(self, self.usage_field))


class FAQEntry(KnowledgeItem):
    """Curated question/answer pair."""

    source_kind: ClassVar[SourceKind] = SourceKind.FAQ
    usage_field: ClassVar[str] = "helpful_count"
    counter_fields: ClassVar[frozenset] = frozenset({"helpful_count", "not_helpful_count", "view_count"})

    view_count: int = Field(default=0, ge=0)
    helpful_count: int = Field(default=0, ge=0)
    not_helpful_count: int = Field(default=0, ge=0)

    @property
    def question(self) -> str:
        return self.title

    @property
    def answer(self) -> str:
        return self.body

    @property
    def helpfulness_ratio(self) -> float:
        total = self.helpful_count + self.not_helpful_count
        return (self.helpful_count / total) * 100 if total > 0 else 0.0


class DocumentEntry(KnowledgeItem):
    """Company document, policy or procedure."""

    source_kind: ClassVar[SourceKind] = SourceKind.DOCUMENT
    usage_field: ClassVar[str] = "access_count"
    counter_fields: ClassVar[frozenset] = frozenset({"access_count"})

    doc_type: DocumentType = Field(default=DocumentType.DOCUMENT)
    version: str = Field(default="1.0")
    access_count: int = Field(default=0, ge=0)

    @property
    def content_preview(self) -> str:
        return self.body[:200] + "..." if len(self.body) > 200 else self.body


# ============================================================================
# Pipeline Models
# ============================================================================


class RankedContextItem(BaseModel):
    """One entry of the merged, ordered context. Lives for a single request."""

    model_config = ConfigDict(frozen=True)

    title: str
    body: str
    priority: int
    source_kind: SourceKind
    updated_at: datetime
    origin_id: str

    @field_validator("updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @classmethod
    def from_item(cls, item: KnowledgeItem) -> "RankedContextItem":
        return cls(
            title=item.title,
            body=item.body,
            priority=item.priority,
            source_kind=item.source_kind,
            updated_at=item.updated_at,
            origin_id=item.id,
        )


class ConversationMessage(BaseModel):
    """A single turn of conversation history."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class Completion(BaseModel):
    """Result of one LLM completion call."""

    text: str
    token_count: int = Field(default=0, ge=0)
    latency_ms: int = Field(default=0, ge=0)
    model: Optional[str] = None


class AnswerResult(BaseModel):
    """What the pipeline hands back to the chat-handling layer."""

    answer_text: str
    context_items_used_count: int = Field(ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# HTTP Models
# ============================================================================


class ChatRequest(BaseModel):
    """Request for a chat answer."""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "message": "Who is the CEO?",
            "session_id": "3f0c9a52-8a7e-4d8e-9a43-0f6f0a6b2f11",
        }
    })

    message: str = Field(..., min_length=1, max_length=2000, description="User message")
    session_id: Optional[str] = Field(default=None, description="Chat session to continue")


class ChatResponse(BaseModel):
    success: bool = True
    answer: str
    session_id: Optional[str] = None
    context_used: bool
    context_items_used_count: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchResponse(BaseModel):
    """Debug view of both store searches and the merged context."""

    success: bool = True
    query: str
    keywords: List[str]
    faqs: List[Dict[str, Any]]
    documents: List[Dict[str, Any]]
    context: List[RankedContextItem]
    degraded_stores: List[str] = Field(default_factory=list)
    latency_ms: int = 0


class SessionResponse(BaseModel):
    success: bool = True
    session_id: str
    created_at: datetime
    ttl_seconds: int


class HistoryResponse(BaseModel):
    success: bool = True
    session_id: str
    messages: List[ConversationMessage]
    total_messages: int


class RatingRequest(BaseModel):
    """Satisfaction rating for a finished chat."""

    rating: int = Field(..., ge=1, le=5, description="1 (poor) to 5 (excellent)")
    feedback: Optional[str] = Field(default=None, max_length=1000)


class SessionSummary(BaseModel):
    success: bool = True
    session_id: str
    title: str
    status: Literal["active", "closed"]
    created_at: datetime
    message_count: int
    rating: Optional[int] = None
    feedback: Optional[str] = None

    @classmethod
    def from_session(cls, session: Dict[str, Any]) -> "SessionSummary":
        return cls(
            session_id=session["session_id"],
            title=session["title"],
            status=session["status"],
            created_at=session["created_at"],
            message_count=len(session["messages"]),
            rating=session["rating"],
            feedback=session["feedback"],
        )
