#!/usr/bin/env python3
"""
Question answering pipeline.

query -> keyword match -> FAQ and document search (concurrently)
      -> merged ranked context -> prompt -> LLM -> usage feedback

Store failures degrade to fewer context items. Only LLM failures reach the
caller.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import uuid4

from loguru import logger

from support_rag.config import CONTEXT_BUDGET, SEARCH_LIMIT, STORE_TIMEOUT_SECONDS
from support_rag.context import ContextAssembler
from support_rag.errors import InvalidQueryError, RequestCancelledError, StoreUnavailableError
from support_rag.keywords import is_company_query, match_keywords
from support_rag.logging_config import log_context_assembled, log_llm_call
from support_rag.metrics import track_context_size, track_search, track_store_failure
from support_rag.models import (
    AnswerResult,
    ConversationMessage,
    KnowledgeItem,
    RankedContextItem,
    SourceKind,
)
from support_rag.prompt import PromptContract
from support_rag.store import KnowledgeStore

HistoryLike = Iterable[Union[ConversationMessage, Dict[str, Any]]]


def require_valid_query(query: Optional[str]) -> str:
    """Return the stripped query or raise InvalidQueryError."""
    if query is None or not str(query).strip():
        raise InvalidQueryError()
    return str(query).strip()


def _coerce_history(history: HistoryLike) -> List[ConversationMessage]:
    return [
        m if isinstance(m, ConversationMessage) else ConversationMessage.model_validate(m)
        for m in history or ()
    ]


@dataclass
class Retrieval:
    """Search + assemble outcome for one query."""
    faq_results: List[KnowledgeItem] = field(default_factory=list)
    document_results: List[KnowledgeItem] = field(default_factory=list)
    context: List[RankedContextItem] = field(default_factory=list)
    degraded_stores: List[str] = field(default_factory=list)
    latency_ms: int = 0


class SupportPipeline:
    """Answer support questions from the FAQ and document stores."""

    def __init__(
        self,
        faq_store: KnowledgeStore,
        document_store: KnowledgeStore,
        llm,
        usage=None,
        search_limit: int = SEARCH_LIMIT,
        context_budget: int = CONTEXT_BUDGET,
        store_timeout: float = STORE_TIMEOUT_SECONDS,
        search_workers: int = 4,
    ):
        """
        Args:
            faq_store: Store of FAQ entries
            document_store: Store of company documents
            llm: Object with `complete(prompt_text) -> Completion`
            usage: Optional UsageFeedback; receives the final context
            search_limit: Per-store result limit on the chat path
            context_budget: Maximum context items forwarded to the LLM
            store_timeout: Seconds to wait for both store searches
            search_workers: Search threads per store; a hung store can only
                exhaust its own pool
        """
        if search_limit < 0:
            raise ValueError(f"search_limit must be >= 0, got {search_limit}")
        self.faq_store = faq_store
        self.document_store = document_store
        self.llm = llm
        self.usage = usage
        self.search_limit = search_limit
        self.assembler = ContextAssembler(context_budget)
        self.store_timeout = store_timeout
        self._search_pools: Dict[SourceKind, ThreadPoolExecutor] = {
            store.kind: ThreadPoolExecutor(
                max_workers=search_workers, thread_name_prefix=f"search-{store.name.lower()}"
            )
            for store in (faq_store, document_store)
        }

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def _search_store(self, store: KnowledgeStore, query: str, limit: int) -> List[KnowledgeItem]:
        t0 = time.time()
        try:
            results = store.search(query, limit)
        except StoreUnavailableError:
            raise
        except Exception as e:
            raise StoreUnavailableError(
                f"{store.name} search failed: {type(e).__name__}: {e}", store=store.name, cause=e
            ) from e
        track_search(store.name, len(results), time.time() - t0)
        return results

    def retrieve(self, query: str, limit: Optional[int] = None) -> Retrieval:
        """Search both stores concurrently and assemble the ranked context.

        Empty or whitespace-only queries return an empty Retrieval.
        """
        limit = self.search_limit if limit is None else limit
        if not (query or "").strip():
            return Retrieval()

        t0 = time.time()
        deadline = t0 + self.store_timeout
        futures = {
            store.kind: (store, self._search_pools[store.kind].submit(self._search_store, store, query, limit))
            for store in (self.faq_store, self.document_store)
        }

        results: Dict[SourceKind, List[KnowledgeItem]] = {}
        degraded: List[str] = []
        for kind, (store, future) in futures.items():
            try:
                results[kind] = future.result(timeout=max(0.0, deadline - time.time()))
            except FuturesTimeoutError:
                future.cancel()
                degraded.append(store.name)
                track_store_failure(store.name)
                logger.warning(f"{store.name} search timed out after {self.store_timeout:.1f}s; continuing without it")
            except StoreUnavailableError as e:
                degraded.append(store.name)
                track_store_failure(store.name)
                logger.warning(f"{store.name} store unavailable; continuing without it: {e}")

        faq_results = results.get(SourceKind.FAQ, [])
        document_results = results.get(SourceKind.DOCUMENT, [])
        context = self.assembler.assemble(faq_results, document_results)
        track_context_size(len(context))

        return Retrieval(
            faq_results=faq_results,
            document_results=document_results,
            context=context,
            degraded_stores=degraded,
            latency_ms=int((time.time() - t0) * 1000),
        )

    # ------------------------------------------------------------------
    # Answering
    # ------------------------------------------------------------------

    def answer(
        self,
        query: str,
        conversation_history: HistoryLike = (),
        cancel_event: Optional[threading.Event] = None,
        request_id: Optional[str] = None,
    ) -> AnswerResult:
        """Answer one user message.

        Args:
            query: Latest user message (must be non-blank)
            conversation_history: Earlier messages, oldest first, excluding `query`
            cancel_event: Set by the caller when the request is aborted
            request_id: Correlation id for logs

        Returns:
            AnswerResult with the model's text, context size and metadata

        Raises:
            InvalidQueryError: blank query
            LLMFailure: completion failed (auth, quota, rate limit, transient)
            RequestCancelledError: `cancel_event` was set before the answer was delivered
        """
        query = require_valid_query(query)
        request_id = request_id or str(uuid4())
        history = _coerce_history(conversation_history)
        t0 = time.time()

        retrieval = self.retrieve(query)
        log_context_assembled(
            request_id,
            faq_count=len(retrieval.faq_results),
            document_count=len(retrieval.document_results),
            context_count=len(retrieval.context),
            degraded_stores=retrieval.degraded_stores,
        )

        prompt_text = PromptContract.build_prompt(query, retrieval.context, history)
        completion = self.llm.complete(prompt_text)
        log_llm_call(request_id, completion.token_count, completion.latency_ms, model=completion.model)

        result = AnswerResult(
            answer_text=completion.text,
            context_items_used_count=len(retrieval.context),
            metadata={
                "request_id": request_id,
                "model": completion.model,
                "token_count": completion.token_count,
                "latency_ms": {
                    "retrieval": retrieval.latency_ms,
                    "llm": completion.latency_ms,
                    "total": int((time.time() - t0) * 1000),
                },
                "keywords": sorted(match_keywords(query)),
                "faq_results": len(retrieval.faq_results),
                "document_results": len(retrieval.document_results),
                "degraded_stores": retrieval.degraded_stores,
                "is_company_query": is_company_query(query),
                "sources": [
                    {
                        "source_kind": item.source_kind.value,
                        "origin_id": item.origin_id,
                        "title": item.title,
                        "priority": item.priority,
                    }
                    for item in retrieval.context
                ],
            },
        )

        # Dispatched before the cancellation check so in-flight writes still land.
        if self.usage is not None and retrieval.context:
            self.usage.record_usage(retrieval.context)

        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"[{request_id}] request cancelled before delivery; dropping answer")
            raise RequestCancelledError()

        return result

    def close(self) -> None:
        for pool in self._search_pools.values():
            pool.shutdown(wait=False)
