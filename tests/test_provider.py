import io
import json
import socket
import urllib.error
import urllib.request

import pytest

from taskmesh.llm.provider import ChatCompletionProvider, LLMError, PromptContext, StaticResponseProvider


class FakeResponse:
    def __init__(self, payload):
        self._body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _context():
    return PromptContext(
        agent_name="Writer",
        task_id="t-1",
        system_prompt="Be brief.",
        model="openai/gpt-4o-mini",
        temperature=0.3,
        max_tokens=256,
    )


def test_generate_posts_chat_completion(monkeypatch):
    captured = {}

    def fake_urlopen(request, timeout):
        captured["request"] = request
        captured["timeout"] = timeout
        return FakeResponse({"choices": [{"message": {"content": "  Hello there  "}}]})

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    provider = ChatCompletionProvider(api_key="secret", base_url="https://llm.example/api/v1/", timeout=5)

    assert provider.generate("Say hello", _context()) == "Hello there"

    request = captured["request"]
    assert request.full_url == "https://llm.example/api/v1/chat/completions"
    assert request.get_method() == "POST"
    assert request.get_header("Authorization") == "Bearer secret"
    body = json.loads(request.data.decode("utf-8"))
    assert body == {
        "model": "openai/gpt-4o-mini",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Say hello"},
        ],
        "temperature": 0.3,
        "max_tokens": 256,
    }
    assert captured["timeout"] == 5


def test_key_is_read_from_environment(monkeypatch):
    monkeypatch.setenv("MY_LLM_KEY", "from-env")
    provider = ChatCompletionProvider(api_key_env="MY_LLM_KEY", model="override")
    assert provider.api_key == "from-env"
    assert provider.build_payload("hi", _context())["model"] == "override"


def test_missing_key(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    with pytest.raises(LLMError, match="API key is required"):
        ChatCompletionProvider().generate("hi", _context())


def test_http_error_is_descriptive(monkeypatch):
    def fake_urlopen(request, timeout):
        raise urllib.error.HTTPError(
            request.full_url, 401, "Unauthorized", None, io.BytesIO(b'{"error": "invalid key"}')
        )

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(LLMError, match="Chat completion API error: 401 - .*invalid key"):
        ChatCompletionProvider(api_key="bad").generate("hi", _context())


def test_network_failure(monkeypatch):
    def fake_urlopen(request, timeout):
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(LLMError, match="connection refused"):
        ChatCompletionProvider(api_key="k").generate("hi", _context())


@pytest.mark.parametrize("payload", [{"choices": []}, {"error": "overloaded"}, b"<html>busy</html>"])
def test_unexpected_payload(monkeypatch, payload):
    monkeypatch.setattr(urllib.request, "urlopen", lambda request, timeout: FakeResponse(payload))
    with pytest.raises(LLMError):
        ChatCompletionProvider(api_key="k").generate("hi", _context())


def test_static_provider_replays_and_records():
    provider = StaticResponseProvider(["first"])
    assert provider.generate("prompt", _context()) == "first"
    assert provider.prompts == ["prompt"]
    with pytest.raises(LLMError):
        provider.generate("again", _context())


def test_read_timeout_is_an_llm_error(monkeypatch):
    def fake_urlopen(request, timeout):
        raise socket.timeout("read timed out")

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(LLMError, match="timed out after 5s"):
        ChatCompletionProvider(api_key="k", timeout=5).generate("hi", _context())
