#!/usr/bin/env python3
"""
Usage feedback: bump per-item usage counters after an answer is produced.

Writes run on a background thread pool and are never awaited by the
response path. Every write has its own error boundary; a failed write is
logged and dropped.
"""
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Mapping, Optional, Sequence, Set

from loguru import logger

from support_rag.config import USAGE_WORKERS
from support_rag.errors import UsageFeedbackError
from support_rag.logging_config import log_usage_failure
from support_rag.metrics import track_usage_write
from support_rag.models import RankedContextItem, SourceKind
from support_rag.store import ITEM_TYPES, KnowledgeStore


class UsageFeedback:
    """Fire-and-forget usage counter updates."""

    def __init__(
        self,
        stores: Mapping[SourceKind, KnowledgeStore],
        max_workers: int = USAGE_WORKERS,
    ):
        self.stores = dict(stores)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="usage-feedback")
        self._pending: Set[Future] = set()
        self._lock = Lock()
        self._closed = False
        logger.info(f"UsageFeedback initialized: workers={max_workers}, stores={sorted(k.value for k in self.stores)}")

    def record_usage(self, items: Sequence[RankedContextItem]) -> None:
        """Schedule one counter increment per context item and return immediately."""
        for item in items:
            try:
                future = self._executor.submit(self._write, item)
            except RuntimeError as e:
                # executor already shut down
                log_usage_failure(item.origin_id, item.source_kind.value, e)
                track_usage_write(item.source_kind.value, "dropped")
                continue
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _write(self, item: RankedContextItem) -> None:
        try:
            store = self.stores.get(item.source_kind)
            if store is None:
                raise UsageFeedbackError(
                    f"No store registered for {item.source_kind.value}", origin_id=item.origin_id
                )
            store.increment_usage(item.origin_id, ITEM_TYPES[item.source_kind].usage_field)
        except Exception as e:
            log_usage_failure(item.origin_id, item.source_kind.value, e)
            track_usage_write(item.source_kind.value, "failed")
            return
        track_usage_write(item.source_kind.value, "ok")

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for writes scheduled so far. Returns False on timeout."""
        with self._lock:
            outstanding = list(self._pending)
        if not outstanding:
            return True
        _, not_done = wait(outstanding, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Stop accepting work; in-flight writes finish when `wait_for_pending`."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait_for_pending)
        logger.info("UsageFeedback shut down")
