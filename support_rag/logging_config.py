from __future__ import annotations

"""
Centralized logging configuration for the support assistant.

Provides unified logging across all modules using loguru.
Supports both console and file output with structured event lines.
"""

import sys
import json
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from loguru import logger
from support_rag.config import CONFIG, redact_secrets


def setup_logging() -> None:
    """
    Configure unified logging for the whole service.

    This should be called once at application startup.
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        format=(
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=CONFIG.LOG_LEVEL,
        colorize=True,
    )

    if CONFIG.LOG_FILE:
        logger.add(
            CONFIG.LOG_FILE,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name}:{function}:{line} - "
                "{message}"
            ),
            level=CONFIG.LOG_LEVEL,
            rotation="500 MB",
            retention="7 days",
            compression="zip",
        )

    logger.info(f"Logging configured: level={CONFIG.LOG_LEVEL}")


def log_structured(event_type: str, data: Dict[str, Any], level: str = "info") -> None:
    """
    Log structured data as JSON.

    Args:
        event_type: Type of event (e.g., 'store_search_completed', 'error_occurred')
        data: Dictionary of data to log
        level: Log level (debug, info, warning, error, critical)
    """
    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
        **data,
    }

    if log_entry.get("error"):
        log_entry["error"] = redact_secrets(str(log_entry["error"]))

    log_func = getattr(logger, level.lower(), logger.info)
    log_func(json.dumps(log_entry, default=str))


def log_search(
    store: str,
    query: str,
    latency_ms: int,
    results_count: int,
    limit: Optional[int] = None,
    keywords: Optional[list] = None,
) -> None:
    """Log one store search."""
    log_structured(
        "store_search_completed",
        {
            "store": store,
            "query": query[:100],
            "latency_ms": latency_ms,
            "results_count": results_count,
            "limit": limit,
            "keywords": sorted(keywords or []),
        },
        level="debug",
    )


def log_context_assembled(
    request_id: str,
    faq_count: int,
    document_count: int,
    context_count: int,
    degraded_stores: Optional[list] = None,
) -> None:
    """Log the merged context that will be sent to the model."""
    log_structured(
        "context_assembled",
        {
            "request_id": request_id,
            "faq_results": faq_count,
            "document_results": document_count,
            "context_items": context_count,
            "degraded_stores": degraded_stores or [],
        },
    )


def log_llm_call(
    request_id: str,
    token_count: int,
    latency_ms: int,
    model: Optional[str] = None,
) -> None:
    """Log an LLM API call."""
    log_structured(
        "llm_call_completed",
        {
            "request_id": request_id,
            "model": model,
            "token_count": token_count,
            "latency_ms": latency_ms,
        },
    )


def log_usage_failure(origin_id: str, source_kind: str, error: Exception) -> None:
    """Log a dropped usage counter write."""
    log_structured(
        "usage_feedback_dropped",
        {
            "origin_id": origin_id,
            "source_kind": source_kind,
            "error_type": type(error).__name__,
            "error": str(error),
        },
        level="warning",
    )


def log_error(error_type: str, message: str, request_id: Optional[str] = None, **kwargs: Any) -> None:
    """Log an error with context."""
    log_structured(
        "error_occurred",
        {
            "error_type": error_type,
            "message": message,
            "request_id": request_id,
            **kwargs,
        },
        level="error",
    )
