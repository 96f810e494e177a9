import pytest
import requests

from chromasort.errors import ConfigurationMissing
from chromasort.vision_providers import (
    GeminiProvider,
    OllamaProvider,
    OpenAICompatProvider,
    get_provider,
)
from chromasort.vision import RESPONSE_SCHEMA

PAYLOAD = {
    "model": "m-1",
    "prompt": "describe",
    "image": {"data": "QUJD", "mime_type": "image/webp"},
    "schema": RESPONSE_SCHEMA,
}


class FakeResponse:
    def __init__(self, data, status_code=200):
        self._data = data
        self.status_code = status_code

    def json(self):
        return self._data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)


def _capture_post(monkeypatch, response):
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append({"url": url, "headers": headers or {}, "json": json, "timeout": timeout})
        return response

    monkeypatch.setattr(requests, "post", fake_post)
    return calls


def test_gemini_request_shape_and_text_extraction(monkeypatch) -> None:
    answer = {"candidates": [{"content": {"parts": [{"text": '{"colors": []'}, {"text": ', "tags": []}'}]}}]}
    calls = _capture_post(monkeypatch, FakeResponse(answer))
    provider = GeminiProvider("secret", "https://example.test/v1beta/")

    text = provider.send_request(PAYLOAD, timeout=9)

    assert text == '{"colors": [], "tags": []}'
    call = calls[0]
    assert call["url"] == "https://example.test/v1beta/models/m-1:generateContent"
    assert call["headers"]["x-goog-api-key"] == "secret"
    assert call["timeout"] == 9
    parts = call["json"]["contents"][0]["parts"]
    assert parts[0] == {"inlineData": {"mimeType": "image/webp", "data": "QUJD"}}
    assert parts[1] == {"text": "describe"}
    config = call["json"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert config["responseSchema"]["type"] == "OBJECT"
    assert config["responseSchema"]["properties"]["colors"]["items"]["type"] == "STRING"


def test_gemini_without_candidates_returns_empty_text(monkeypatch) -> None:
    _capture_post(monkeypatch, FakeResponse({"candidates": []}))

    assert GeminiProvider("k", "https://example.test").send_request(PAYLOAD, timeout=1) == ""


def test_gemini_http_error_propagates(monkeypatch) -> None:
    _capture_post(monkeypatch, FakeResponse({}, status_code=403))

    with pytest.raises(requests.exceptions.HTTPError):
        GeminiProvider("k", "https://example.test").send_request(PAYLOAD, timeout=1)


def test_openai_compat_request_shape(monkeypatch) -> None:
    calls = _capture_post(monkeypatch, FakeResponse({"choices": [{"message": {"content": "{}"}}]}))
    provider = OpenAICompatProvider("http://llm.test/v1/chat/completions", api_key="tok")

    assert provider.send_request(PAYLOAD, timeout=3) == "{}"

    call = calls[0]
    assert call["headers"]["Authorization"] == "Bearer tok"
    content = call["json"]["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "describe"}
    assert content[1]["image_url"]["url"] == "data:image/webp;base64,QUJD"
    assert call["json"]["response_format"]["json_schema"]["schema"] == RESPONSE_SCHEMA


def test_openai_compat_without_key_sends_no_auth_header() -> None:
    provider = OpenAICompatProvider("http://llm.test/v1/chat/completions")

    assert "Authorization" not in provider._headers()


def test_ollama_request_shape(monkeypatch) -> None:
    calls = _capture_post(monkeypatch, FakeResponse({"message": {"content": '{"colors": ["#000000"]}'}}))
    provider = OllamaProvider("http://localhost:11434/api/chat")

    assert provider.send_request(PAYLOAD, timeout=3) == '{"colors": ["#000000"]}'

    body = calls[0]["json"]
    assert body["messages"][0]["images"] == ["QUJD"]
    assert body["format"] == RESPONSE_SCHEMA
    assert body["stream"] is False


def test_get_provider_requires_key_for_gemini() -> None:
    with pytest.raises(ConfigurationMissing, match="API_KEY"):
        get_provider({"api_provider": "gemini", "api_key": None})


def test_get_provider_dispatch_and_defaults() -> None:
    gemini = get_provider({"api_provider": "GEMINI", "api_key": "k"})
    assert isinstance(gemini, GeminiProvider)
    assert gemini.endpoint == "https://generativelanguage.googleapis.com/v1beta"

    assert isinstance(get_provider({"api_provider": "ollama"}), OllamaProvider)

    openai = get_provider({"api_provider": "openai", "api_endpoint": "http://x.test/v1/chat/completions"})
    assert isinstance(openai, OpenAICompatProvider)
    assert openai.endpoint == "http://x.test/v1/chat/completions"

    with pytest.raises(ValueError):
        get_provider({"api_provider": "carrier-pigeon"})


def test_gemini_rejects_non_object_body(monkeypatch) -> None:
    _capture_post(monkeypatch, FakeResponse([{"candidates": []}]))

    with pytest.raises(ValueError):
        GeminiProvider("k", "https://example.test").send_request(PAYLOAD, timeout=1)


def test_gemini_blocked_candidate_and_odd_parts(monkeypatch) -> None:
    _capture_post(monkeypatch, FakeResponse({"candidates": [{"finishReason": "SAFETY"}]}))
    assert GeminiProvider("k", "https://example.test").send_request(PAYLOAD, timeout=1) == ""

    _capture_post(monkeypatch, FakeResponse({"candidates": [{"content": {"parts": ["junk", {"text": "{}"}]}}]}))
    assert GeminiProvider("k", "https://example.test").send_request(PAYLOAD, timeout=1) == "{}"


def test_openai_compat_null_message_is_value_error(monkeypatch) -> None:
    _capture_post(monkeypatch, FakeResponse({"choices": [{"message": None}]}))

    with pytest.raises(ValueError):
        OpenAICompatProvider("http://llm.test/v1/chat/completions").send_request(PAYLOAD, timeout=1)


def test_ollama_missing_message_is_value_error(monkeypatch) -> None:
    _capture_post(monkeypatch, FakeResponse({"message": "not an object"}))

    with pytest.raises(ValueError):
        OllamaProvider("http://localhost:11434/api/chat").send_request(PAYLOAD, timeout=1)
