from __future__ import annotations

import os
import re
import time
import threading
from typing import Any, Dict, Optional
from urllib.parse import urljoin, urlparse, parse_qs

import httpx
from loguru import logger

from support_rag.errors import (
    LLMAuthError,
    LLMFailure,
    LLMQuotaExceededError,
    LLMRateLimitError,
    LLMTransientError,
)
from support_rag.metrics import track_llm_request
from support_rag.models import Completion

_DEFAULT_PATHS = {"openai": "/chat/completions", "ollama": "/api/chat"}
_QUOTA_MARKERS = ("quota", "insufficient_quota", "billing", "resource_exhausted")
_AUTH_MARKERS = ("api_key_invalid", "invalid api key", "invalid_api_key")


def _env_bool(val: Optional[str]) -> Optional[bool]:
    """Parse environment boolean, return None if ambiguous."""
    if val is None:
        return None
    v = val.strip().lower()
    if v in ("1", "true", "yes", "y"):
        return True
    if v in ("0", "false", "no", "n"):
        return False
    return None


DEFAULT_TIMEOUT = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "500"))
TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))


def _validate_config() -> None:
    """Validate LLM configuration. Raises ValueError if invalid."""
    base_url = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1").strip()
    chat_path = os.getenv("LLM_CHAT_PATH", "").strip()
    api_type = os.getenv("LLM_API_TYPE", "openai").strip().lower()
    mock_llm = os.getenv("MOCK_LLM", "false").lower() == "true"

    if api_type not in _DEFAULT_PATHS:
        raise ValueError(f"LLM_API_TYPE must be 'openai' or 'ollama', got: {api_type}")

    if not mock_llm and not base_url.startswith(("http://", "https://")):
        raise ValueError(f"LLM_BASE_URL must be http:// or https://, got: {base_url}")

    if chat_path and not chat_path.startswith("/"):
        raise ValueError(f"LLM_CHAT_PATH must start with '/', got: {chat_path}")

    timeout = float(os.getenv("LLM_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT)))
    if timeout <= 0:
        raise ValueError(f"LLM_TIMEOUT_SECONDS must be positive, got: {timeout}")

    logger.info("LLM config validation passed")


def _sanitize_url(url: str) -> str:
    """Remove or mask sensitive query parameters from URL for logging."""
    try:
        parsed = urlparse(url)
        if not parsed.query:
            return url
        params = parse_qs(parsed.query, keep_blank_values=True)
        for sensitive_key in ("token", "key", "api_key", "password", "secret"):
            if sensitive_key in params:
                params[sensitive_key] = ["***"]
        sanitized_qs = "&".join(f"{k}={v[0]}" for k, v in params.items())
        return f"{parsed.scheme}://{parsed.netloc}{parsed.path}?{sanitized_qs}" if sanitized_qs else f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
    except (ValueError, AttributeError) as e:
        logger.warning(f"Failed to sanitize URL: {e}")
        return url


def _redact_token(text: str) -> str:
    """Redact Bearer token values from log text."""
    return re.sub(r'Bearer\s+[^\s]+', 'Bearer ***', text, flags=re.IGNORECASE)


def _cap_response(text: str, max_len: int = 200) -> str:
    """Cap response body length for logging."""
    if len(text) > max_len:
        return text[:max_len] + f"... ({len(text)-max_len} more bytes)"
    return text


def _retry_after(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_http_error(resp: httpx.Response, model: Optional[str] = None) -> LLMFailure:
    """Map an unsuccessful LLM response onto the LLM error taxonomy."""
    status = resp.status_code
    body = _cap_response(_redact_token(resp.text or ""))
    lowered = body.lower()

    if status in (401, 403) or any(m in lowered for m in _AUTH_MARKERS):
        return LLMAuthError(f"LLM rejected credentials (HTTP {status})", status_code=status, model=model)
    if status == 429:
        if any(m in lowered for m in _QUOTA_MARKERS):
            return LLMQuotaExceededError(
                "LLM quota exceeded. Please try again later.",
                status_code=status, model=model, retry_after_seconds=_retry_after(resp),
            )
        return LLMRateLimitError(
            "LLM rate limit exceeded. Please try again later.",
            status_code=status, model=model, retry_after_seconds=_retry_after(resp),
        )
    if 500 <= status < 600:
        return LLMTransientError(f"LLM server error (HTTP {status})", status_code=status, model=model)
    return LLMFailure(f"LLM request failed (HTTP {status}): {body}", status_code=status, model=model)


# Module-level HTTP client (reused across instances, thread-safe singleton)
HTTP_CLIENT: Optional[httpx.Client] = None
_http_client_lock = threading.Lock()


def _get_http_client() -> httpx.Client:
    """Get or create module-level HTTP client.

    Uses double-check locking pattern for thread-safe initialization.
    """
    global HTTP_CLIENT

    if HTTP_CLIENT is not None:
        return HTTP_CLIENT

    with _http_client_lock:
        if HTTP_CLIENT is None:
            base_url = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1").strip()
            verify_env = _env_bool(os.getenv("LLM_VERIFY_SSL"))
            verify = verify_env if verify_env is not None else base_url.startswith("https://")

            timeout = httpx.Timeout(connect=5.0, read=DEFAULT_TIMEOUT, write=10.0, pool=5.0)
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)

            HTTP_CLIENT = httpx.Client(
                timeout=timeout,
                verify=verify,
                limits=limits,
                follow_redirects=True,
            )

    return HTTP_CLIENT


def close_http_client() -> None:
    """Called by FastAPI on shutdown."""
    global HTTP_CLIENT
    try:
        if HTTP_CLIENT is not None:
            HTTP_CLIENT.close()
    finally:
        HTTP_CLIENT = None


class LLMClient:
    """Single-call text completion against an OpenAI- or Ollama-style endpoint.

    Each failure is classified and raised once; retrying is up to the caller.
    """

    def __init__(self, http_client: Optional[httpx.Client] = None) -> None:
        _validate_config()

        self.api_type = os.getenv("LLM_API_TYPE", "openai").strip().lower()
        self.base_url = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1").strip()
        self.chat_path = os.getenv("LLM_CHAT_PATH", "").strip() or _DEFAULT_PATHS[self.api_type]
        self.model = os.getenv("LLM_MODEL", "gpt-3.5-turbo").strip()
        self.api_key = os.getenv("LLM_API_KEY", "").strip()
        self.max_tokens = MAX_TOKENS
        self.temperature = TEMPERATURE
        self.mock = os.getenv("MOCK_LLM", "false").lower() == "true"
        self.chat_url = self._build_url(self.chat_path)
        self._http_client = http_client

    def _build_url(self, path: str) -> str:
        """Build full URL from base and path using urljoin."""
        base = self.base_url.rstrip("/")
        path_part = path.lstrip("/")
        return urljoin(base + "/", path_part)

    def _client(self) -> httpx.Client:
        return self._http_client or _get_http_client()

    def _payload(self, prompt_text: str) -> Dict[str, Any]:
        messages = [{"role": "user", "content": prompt_text}]
        if self.api_type == "ollama":
            return {
                "model": self.model,
                "messages": messages,
                "stream": False,
                "options": {"temperature": self.temperature, "num_predict": self.max_tokens},
            }
        return {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "presence_penalty": 0.1,
            "frequency_penalty": 0.1,
        }

    def _parse(self, data: Any) -> tuple[str, int]:
        """Return (text, token_count) from a provider response body."""
        if not isinstance(data, dict):
            raise LLMFailure(f"LLM response body is a {type(data).__name__}, expected an object", model=self.model)
        if self.api_type == "ollama":
            msg = data.get("message")
            if not isinstance(msg, dict):
                raise LLMFailure("LLM response contained no message", model=self.model)
            tokens = int(data.get("prompt_eval_count") or 0) + int(data.get("eval_count") or 0)
            return str(msg.get("content") or "").strip(), tokens
        choices = data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise LLMFailure("LLM response contained no choices", model=self.model)
        first = choices[0]
        msg = first.get("message") if isinstance(first, dict) else None
        if not isinstance(msg, dict):
            raise LLMFailure("LLM response choice contained no message", model=self.model)
        usage = data.get("usage")
        tokens = int(usage.get("total_tokens") or 0) if isinstance(usage, dict) else 0
        return str(msg.get("content") or "").strip(), tokens

    def _mock_completion(self, prompt_text: str) -> Completion:
        # Echo the top-ranked context item so offline runs stay grounded.
        first = next((line for line in prompt_text.splitlines() if line.startswith("1. [")), None)
        text = first[3:].strip() if first else "I'm here to help. Could you tell me more about your question?"
        return Completion(text=text, token_count=len(prompt_text.split()), latency_ms=0, model="mock")

    def complete(self, prompt_text: str) -> Completion:
        """Send one prompt and return the completion.

        Raises:
            LLMAuthError: credentials rejected
            LLMQuotaExceededError / LLMRateLimitError: try again later
            LLMTransientError: timeout, connection error, 5xx
            LLMFailure: any other unusable response
        """
        if self.mock:
            return self._mock_completion(prompt_text)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        sanitized_url = _sanitize_url(self.chat_url)
        t0 = time.time()
        try:
            resp = self._client().post(self.chat_url, json=self._payload(prompt_text), headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            duration = time.time() - t0
            track_llm_request(self.model, "transient_error", duration)
            logger.warning(f"LLM POST to {sanitized_url} failed: {type(e).__name__}")
            raise LLMTransientError(
                f"LLM request failed: {_redact_token(str(e)) or type(e).__name__}", model=self.model, cause=e
            ) from e

        duration = time.time() - t0
        if resp.status_code >= 400:
            error = classify_http_error(resp, model=self.model)
            track_llm_request(self.model, error.error_code.lower(), duration)
            logger.warning(f"LLM POST to {sanitized_url} returned HTTP {resp.status_code}: {error.error_code}")
            raise error

        try:
            text, tokens = self._parse(resp.json())
        except (ValueError, TypeError) as e:
            track_llm_request(self.model, "invalid_response", duration)
            raise LLMFailure(
                f"LLM returned an unparsable body: {_cap_response(resp.text)}", model=self.model, cause=e
            ) from e

        latency_ms = int(duration * 1000)
        track_llm_request(self.model, "success", duration, token_count=tokens)
        return Completion(text=text, token_count=tokens, latency_ms=latency_ms, model=self.model)

    def health_check(self) -> Dict[str, Any]:
        """Report whether the client is configured. Returns {'ok': bool, 'details': str}."""
        if self.mock:
            return {"ok": True, "details": "mock mode"}
        if self.api_type == "openai" and not self.api_key:
            return {"ok": False, "details": "LLM_API_KEY not configured"}
        return {"ok": True, "details": f"{self.api_type} at {_sanitize_url(self.base_url)} model={self.model}"}
