#!/usr/bin/env python3
"""
Knowledge stores for FAQ entries and company documents.

`KnowledgeStore` is the seam the retrieval pipeline depends on; the
in-memory implementation backs the service and the tests. Stores hand out
copies so a search always works on a snapshot, and admin edits made while
a request is in flight are simply picked up by the next request.
"""
from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from loguru import logger
from pydantic import ValidationError

from support_rag.errors import ConfigurationError
from support_rag.models import (
    DocumentEntry,
    FAQEntry,
    KnowledgeItem,
    SourceKind,
    as_utc,
    utcnow,
)
from support_rag.search import RelevanceSearch

ITEM_TYPES: Dict[SourceKind, Type[KnowledgeItem]] = {
    SourceKind.FAQ: FAQEntry,
    SourceKind.DOCUMENT: DocumentEntry,
}


class KnowledgeStore(ABC):
    """Searchable collection of one kind of knowledge item."""

    kind: SourceKind

    def __init__(self, kind: SourceKind, searcher: Optional[RelevanceSearch] = None):
        self.kind = kind
        self.searcher = searcher or RelevanceSearch()

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    def active_items(self) -> List[KnowledgeItem]:
        """Snapshot of every active item, in a stable order."""

    @abstractmethod
    def get(self, item_id: str) -> KnowledgeItem:
        """Return a copy of one item; raises KeyError if unknown."""

    @abstractmethod
    def increment_usage(self, item_id: str, counter_field: str) -> None:
        """Add one to a usage counter and stamp `last_accessed_at`."""

    def search(self, query: str, limit: int) -> List[KnowledgeItem]:
        return self.searcher.search(self, query, limit)


class InMemoryKnowledgeStore(KnowledgeStore):
    """
    Thread-safe dict-backed store.

    Insertion order is kept so equal-ranked items come back in the
    same order every time.
    """

    def __init__(
        self,
        kind: SourceKind,
        items: Optional[Iterable[KnowledgeItem]] = None,
        searcher: Optional[RelevanceSearch] = None,
    ):
        super().__init__(kind, searcher)
        self.item_type = ITEM_TYPES[kind]
        self._items: Dict[str, KnowledgeItem] = {}
        self._lock = RLock()
        for item in items or ():
            self.upsert(item)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return item_id in self._items

    def __repr__(self) -> str:
        return f"InMemoryKnowledgeStore(kind={self.kind.value}, items={len(self)})"

    def _require(self, item_id: str) -> KnowledgeItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise KeyError(f"{self.kind.value} item not found: {item_id}") from None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def active_items(self) -> List[KnowledgeItem]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._items.values() if item.is_active]

    def get(self, item_id: str) -> KnowledgeItem:
        with self._lock:
            return self._require(item_id).model_copy(deep=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, item: KnowledgeItem) -> KnowledgeItem:
        """Insert or replace an item; `updated_at` never moves backwards."""
        if not isinstance(item, self.item_type):
            raise TypeError(
                f"{self.kind.value} store only accepts {self.item_type.__name__}, got {type(item).__name__}"
            )
        stored = item.model_copy(deep=True)
        with self._lock:
            existing = self._items.get(stored.id)
            if existing is not None and existing.updated_at > stored.updated_at:
                stored.updated_at = existing.updated_at
            self._items[stored.id] = stored
        return stored.model_copy(deep=True)

    def update_content(
        self,
        item_id: str,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        priority: Optional[int] = None,
        updated_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> KnowledgeItem:
        """Apply an admin edit and stamp it as the latest content change."""
        with self._lock:
            item = self._require(item_id)
            if title is not None:
                item.title = title
            if body is not None:
                item.body = body
            if tags is not None:
                item.tags = list(tags)
            if priority is not None:
                item.priority = priority
            if updated_by is not None:
                item.updated_by = updated_by
            self._touch(item, now)
            return item.model_copy(deep=True)

    def set_active(self, item_id: str, active: bool, updated_by: Optional[str] = None) -> None:
        with self._lock:
            item = self._require(item_id)
            item.is_active = active
            if updated_by is not None:
                item.updated_by = updated_by
            self._touch(item)

    def delete(self, item_id: str) -> bool:
        with self._lock:
            return self._items.pop(item_id, None) is not None

    def increment_usage(self, item_id: str, counter_field: str) -> None:
        """Usage write: touches only the counter and `last_accessed_at`."""
        with self._lock:
            item = self._require(item_id)
            if counter_field not in item.counter_fields:
                raise ValueError(
                    f"{counter_field!r} is not a usage counter of {type(item).__name__}; "
                    f"expected one of {sorted(item.counter_fields)}"
                )
            setattr(item, counter_field, getattr(item, counter_field) + 1)
            item.last_accessed_at = utcnow()

    @staticmethod
    def _touch(item: KnowledgeItem, now: Optional[datetime] = None) -> None:
        stamp = as_utc(now) if now is not None else utcnow()
        if stamp > item.updated_at:
            item.updated_at = stamp


# ============================================================================
# Seed loading
# ============================================================================


def build_item(kind: SourceKind, record: Dict[str, Any]) -> KnowledgeItem:
    """Build an item from a seed record (`question`/`answer` or `title`/`content`)."""
    data = dict(record)
    data.setdefault("id", uuid.uuid4().hex)
    if kind is SourceKind.FAQ:
        data.setdefault("title", data.pop("question", None))
        data.setdefault("body", data.pop("answer", None))
        return FAQEntry(**data)
    data.setdefault("body", data.pop("content", None))
    if "type" in data:
        data.setdefault("doc_type", data.pop("type"))
    return DocumentEntry(**data)


def load_seed_file(path: Path) -> Tuple[InMemoryKnowledgeStore, InMemoryKnowledgeStore]:
    """
    Build the FAQ and document stores from a JSON seed file.

    The file holds `{"faqs": [...], "documents": [...]}`. A missing file
    gives two empty stores.

    Raises:
        ConfigurationError: file is not valid JSON or a record is invalid
    """
    faq_store = InMemoryKnowledgeStore(SourceKind.FAQ)
    document_store = InMemoryKnowledgeStore(SourceKind.DOCUMENT)

    path = Path(path)
    if not path.exists():
        logger.warning(f"Knowledge seed not found at {path}; starting with empty stores")
        return faq_store, document_store

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid knowledge seed JSON at {path}: {e}", cause=e) from e

    if not isinstance(payload, dict):
        raise ConfigurationError(f"Knowledge seed at {path} must be a JSON object")

    for kind, key, store in (
        (SourceKind.FAQ, "faqs", faq_store),
        (SourceKind.DOCUMENT, "documents", document_store),
    ):
        for idx, record in enumerate(payload.get(key, [])):
            try:
                store.upsert(build_item(kind, record))
            except (ValidationError, TypeError) as e:
                raise ConfigurationError(
                    f"Invalid {key}[{idx}] in knowledge seed {path}: {e}",
                    context={"section": key, "index": idx},
                    cause=e,
                ) from e

    logger.info(f"Loaded knowledge seed from {path}: faqs={len(faq_store)}, documents={len(document_store)}")
    return faq_store, document_store
