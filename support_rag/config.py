#!/usr/bin/env python3
"""Centralized configuration with validation and sensible defaults."""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

ROOT = Path(__file__).resolve().parents[1]
DATA = ROOT / "data"


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name)
    return val if val is not None else (default or "")


def _parse_int(name: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(_get_env(name, str(default)))
    except ValueError:
        raise RuntimeError(f"Invalid {name}; must be integer.")
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}.")
    return value


def _parse_float(name: str, default: float) -> float:
    try:
        return float(_get_env(name, str(default)))
    except ValueError:
        return default


# Retrieval
SEARCH_LIMIT: int = _parse_int("SEARCH_LIMIT", 3)
SEARCH_MAX_LIMIT: int = _parse_int("SEARCH_MAX_LIMIT", 50, minimum=1)
CONTEXT_BUDGET: int = _parse_int("CONTEXT_BUDGET", 6)
STORE_TIMEOUT_SECONDS: float = _parse_float("STORE_TIMEOUT_SECONDS", 5.0)
if STORE_TIMEOUT_SECONDS <= 0:
    raise RuntimeError("STORE_TIMEOUT_SECONDS must be positive.")

# Usage feedback
USAGE_WORKERS: int = _parse_int("USAGE_WORKERS", 4, minimum=1)

# Knowledge seed
KNOWLEDGE_SEED_PATH: Path = Path(_get_env("KNOWLEDGE_SEED_PATH", str(DATA / "knowledge_seed.json")))

# Sessions
SESSION_TTL_SECONDS: int = _parse_int("SESSION_TTL_SECONDS", 3600, minimum=1)
MAX_SESSIONS: int = _parse_int("MAX_SESSIONS", 1000, minimum=1)
MAX_SESSION_MESSAGES: int = _parse_int("MAX_SESSION_MESSAGES", 200, minimum=2)

ENV: str = _get_env("ENV", "dev").strip().lower()
ADMIN_TOKEN: str = _get_env("ADMIN_TOKEN", "change-me")


def redact_secrets(text: str) -> str:
    """Mask bearer tokens and api keys before they reach a log sink."""
    if not text:
        return text
    text = re.sub(r"Bearer\s+[^\s]+", "Bearer ***", text, flags=re.IGNORECASE)
    return re.sub(r"(api[_-]?key|token|secret)=([^&\s]+)", r"\1=***", text, flags=re.IGNORECASE)


def health_summary() -> dict:
    """Return a config summary for /health."""
    return {
        "env": ENV,
        "search_limit": SEARCH_LIMIT,
        "context_budget": CONTEXT_BUDGET,
        "store_timeout_seconds": STORE_TIMEOUT_SECONDS,
        "usage_workers": USAGE_WORKERS,
        "knowledge_seed_path": str(KNOWLEDGE_SEED_PATH),
    }


class _Config:
    LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO").upper()
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE") or None
    CONTEXT_CHAR_LIMIT: int = _parse_int("CONTEXT_CHAR_LIMIT", 2000, minimum=1)
    HISTORY_TURNS: int = _parse_int("HISTORY_TURNS", 10)


CONFIG = _Config()
