"""Test LLM client: config validation, response parsing, error classification."""

import httpx
import pytest

from support_rag.errors import (
    LLMAuthError,
    LLMFailure,
    LLMQuotaExceededError,
    LLMRateLimitError,
    LLMTransientError,
)
from support_rag.llm_client import (
    LLMClient,
    _cap_response,
    _redact_token,
    _sanitize_url,
    _validate_config,
    classify_http_error,
)


@pytest.fixture
def live_env(monkeypatch):
    monkeypatch.setenv("MOCK_LLM", "false")
    monkeypatch.setenv("LLM_API_TYPE", "openai")
    monkeypatch.setenv("LLM_BASE_URL", "https://llm.test/v1")
    monkeypatch.setenv("LLM_API_KEY", "sk-test-123")
    monkeypatch.setenv("LLM_MODEL", "test-model")
    monkeypatch.delenv("LLM_CHAT_PATH", raising=False)


def _client(handler):
    """LLMClient over a MockTransport; `calls` collects every request."""
    calls = []

    def _record(request):
        calls.append(request)
        return handler(request)

    http = httpx.Client(transport=httpx.MockTransport(_record))
    return LLMClient(http_client=http), calls


def _openai_ok(text="Jane Doe is our CEO.", tokens=77):
    return httpx.Response(200, json={
        "choices": [{"message": {"role": "assistant", "content": f"  {text}  "}}],
        "usage": {"total_tokens": tokens},
    })


class TestConfigValidation:
    """Test configuration validation on startup."""

    def test_valid_openai(self, live_env):
        _validate_config()

    def test_invalid_api_type(self, live_env, monkeypatch):
        monkeypatch.setenv("LLM_API_TYPE", "invalid_type")
        with pytest.raises(ValueError, match="LLM_API_TYPE must be"):
            _validate_config()

    def test_invalid_scheme(self, live_env, monkeypatch):
        monkeypatch.setenv("LLM_BASE_URL", "ftp://llm.test")
        with pytest.raises(ValueError, match="must be http:// or https://"):
            _validate_config()

    def test_chat_path_needs_slash(self, live_env, monkeypatch):
        monkeypatch.setenv("LLM_CHAT_PATH", "chat")
        with pytest.raises(ValueError, match="must start with '/'"):
            _validate_config()

    def test_default_paths(self, live_env, monkeypatch):
        assert LLMClient().chat_url == "https://llm.test/v1/chat/completions"
        monkeypatch.setenv("LLM_API_TYPE", "ollama")
        monkeypatch.setenv("LLM_BASE_URL", "http://localhost:11434")
        assert LLMClient().chat_url == "http://localhost:11434/api/chat"


class TestLoggingHygiene:
    """Secrets never reach the logs."""

    def test_sanitize_url(self):
        assert _sanitize_url("https://x.test/v1?api_key=abc&q=1") == "https://x.test/v1?api_key=***&q=1"

    def test_redact_token(self):
        assert _redact_token("Authorization: Bearer sk-secret") == "Authorization: Bearer ***"

    def test_cap_response(self):
        capped = _cap_response("x" * 250)
        assert capped.startswith("x" * 200)
        assert "50 more bytes" in capped


class TestComplete:
    """Single completion call."""

    def test_openai_success(self, live_env):
        client, calls = _client(lambda req: _openai_ok())
        completion = client.complete("prompt text")

        assert completion.text == "Jane Doe is our CEO."
        assert completion.token_count == 77
        assert completion.model == "test-model"
        assert calls[0].headers["Authorization"] == "Bearer sk-test-123"
        assert str(calls[0].url) == "https://llm.test/v1/chat/completions"

    def test_ollama_success(self, live_env, monkeypatch):
        monkeypatch.setenv("LLM_API_TYPE", "ollama")
        monkeypatch.setenv("LLM_BASE_URL", "http://ollama.test")
        client, calls = _client(lambda req: httpx.Response(200, json={
            "message": {"role": "assistant", "content": "Hello"},
            "prompt_eval_count": 10,
            "eval_count": 5,
        }))
        completion = client.complete("prompt text")
        assert completion.text == "Hello"
        assert completion.token_count == 15
        assert str(calls[0].url) == "http://ollama.test/api/chat"

    def test_no_choices(self, live_env):
        client, _ = _client(lambda req: httpx.Response(200, json={"choices": []}))
        with pytest.raises(LLMFailure):
            client.complete("prompt")

    @pytest.mark.parametrize("body", [
        ["not", "an", "object"],
        {"choices": [{"message": None}]},
        {"choices": ["text only"]},
        {"choices": {"message": {"content": "hi"}}},
        {"choices": [{"message": {"content": "hi"}}], "usage": {"total_tokens": "many"}},
    ])
    def test_malformed_body_is_llm_failure(self, live_env, body):
        client, _ = _client(lambda req: httpx.Response(200, json=body))
        with pytest.raises(LLMFailure):
            client.complete("prompt")

    def test_ollama_null_message(self, live_env, monkeypatch):
        monkeypatch.setenv("LLM_API_TYPE", "ollama")
        monkeypatch.setenv("LLM_BASE_URL", "http://ollama.test")
        client, _ = _client(lambda req: httpx.Response(200, json={"message": None}))
        with pytest.raises(LLMFailure):
            client.complete("prompt")

    def test_unparsable_body(self, live_env):
        client, _ = _client(lambda req: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(LLMFailure):
            client.complete("prompt")


class TestErrorClassification:
    """HTTP failures map onto the LLM error taxonomy, one attempt each."""

    @pytest.mark.parametrize("status,body,expected", [
        (401, {"error": "unauthorized"}, LLMAuthError),
        (403, {"error": "forbidden"}, LLMAuthError),
        (400, {"error": {"message": "API_KEY_INVALID"}}, LLMAuthError),
        (429, {"error": {"code": "insufficient_quota"}}, LLMQuotaExceededError),
        (429, {"error": "too many requests"}, LLMRateLimitError),
        (500, {"error": "boom"}, LLMTransientError),
        (503, {"error": "unavailable"}, LLMTransientError),
        (400, {"error": "bad request"}, LLMFailure),
    ])
    def test_status_mapping(self, live_env, status, body, expected):
        client, calls = _client(lambda req: httpx.Response(status, json=body))
        with pytest.raises(expected) as exc:
            client.complete("prompt")
        assert type(exc.value) is expected
        assert exc.value.status_code == status
        assert len(calls) == 1

    def test_quota_is_a_rate_limit(self):
        resp = httpx.Response(429, json={"error": "billing hard limit reached"})
        error = classify_http_error(resp, model="m")
        assert isinstance(error, LLMQuotaExceededError)
        assert isinstance(error, LLMRateLimitError)

    def test_retry_after_honoured(self, live_env):
        client, _ = _client(lambda req: httpx.Response(429, headers={"Retry-After": "7"}, json={}))
        with pytest.raises(LLMRateLimitError) as exc:
            client.complete("prompt")
        assert exc.value.retry_after_seconds == 7.0

    def test_connection_error_is_transient(self, live_env):
        def _refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, calls = _client(_refuse)
        with pytest.raises(LLMTransientError):
            client.complete("prompt")
        assert len(calls) == 1

    def test_timeout_is_transient(self, live_env):
        def _slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, _ = _client(_slow)
        with pytest.raises(LLMTransientError):
            client.complete("prompt")


class TestMockMode:
    """Offline mode echoes the top-ranked item."""

    def test_echoes_first_item(self, monkeypatch):
        monkeypatch.setenv("MOCK_LLM", "true")
        monkeypatch.setenv("LLM_API_TYPE", "openai")
        client = LLMClient()
        prompt = "Intro\n\n1. [Document] Team: CEO is Jane Doe\n\n2. [FAQ] CEO: John Smith"
        completion = client.complete(prompt)
        assert completion.text == "[Document] Team: CEO is Jane Doe"
        assert completion.model == "mock"
        assert client.health_check()["ok"] is True

    def test_generic_reply_without_context(self, monkeypatch):
        monkeypatch.setenv("MOCK_LLM", "true")
        monkeypatch.setenv("LLM_API_TYPE", "openai")
        assert "help" in LLMClient().complete("no items here").text

    def test_health_without_key(self, live_env, monkeypatch):
        monkeypatch.setenv("LLM_API_KEY", "")
        assert LLMClient().health_check() == {"ok": False, "details": "LLM_API_KEY not configured"}
