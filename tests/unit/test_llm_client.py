"""
Unit tests -- LLM client: mock mode, dispatch, and the HTTP provider.
"""
import httpx
import pytest

from kpichat.copilot.llm_client import call_llm


def test_mock_returns_string():
    result = call_llm("Hello world", provider="mock")
    assert isinstance(result, str)


def test_mock_answers_empty_object():
    assert call_llm("Hello world", provider="mock") == "{}"


def test_mock_never_reflects_prompt():
    prompt = '{"kpiMetric": "machine_detail", "month": "202599"}'
    result = call_llm(prompt, provider="mock")
    assert "machine_detail" not in result
    assert result == "{}"


def test_unknown_provider_raises():
    with pytest.raises(NotImplementedError, match="not supported"):
        call_llm("hi", provider="banana")


def test_openai_missing_key_raises():
    """Should raise RuntimeError when key is empty."""
    with pytest.raises(RuntimeError, match="openai_api_key"):
        call_llm("hi", provider="openai")


def test_anthropic_missing_key_raises():
    """Should raise RuntimeError when key is empty."""
    with pytest.raises(RuntimeError, match="anthropic_api_key"):
        call_llm("hi", provider="anthropic")


def test_default_provider_is_mock():
    """Settings default to mock -- this should work without any keys."""
    assert call_llm("test") == "{}"


# ── Ollama over HTTP ─────────────────────────────────────

class _FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("POST", "http://llm.local/api/chat")
            raise httpx.HTTPStatusError(
                "server error", request=request, response=httpx.Response(self.status_code, request=request)
            )

    def json(self):
        return self._payload


def test_ollama_posts_chat_body(monkeypatch):
    seen = {}

    def fake_post(url, json=None, timeout=None):
        seen.update(url=url, body=json, timeout=timeout)
        return _FakeResponse({"message": {"content": '{"kpiMetric": "machine_count"}'}})

    monkeypatch.setattr(httpx, "post", fake_post)
    answer = call_llm("多少机台", provider="ollama", system="SYS", timeout=2.0)

    assert answer == '{"kpiMetric": "machine_count"}'
    assert seen["timeout"] == 2.0
    assert seen["body"]["stream"] is False
    assert seen["body"]["messages"][0] == {"role": "system", "content": "SYS"}
    assert seen["body"]["messages"][1] == {"role": "user", "content": "多少机台"}


def test_ollama_missing_message_returns_empty(monkeypatch):
    monkeypatch.setattr(httpx, "post", lambda url, json=None, timeout=None: _FakeResponse({}))
    assert call_llm("hi", provider="ollama") == ""


def test_ollama_http_error_raises(monkeypatch):
    monkeypatch.setattr(httpx, "post", lambda url, json=None, timeout=None: _FakeResponse({}, 500))
    with pytest.raises(httpx.HTTPStatusError):
        call_llm("hi", provider="ollama")
