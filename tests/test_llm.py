import json
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fallback_chat import llm
from fallback_chat.llm import CompletionClient, CompletionError, RateLimitError, extract_reply

URL = "https://openrouter.example/api/v1/chat/completions"


def _response(status_code: int, body: Any) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    if isinstance(body, (dict, list)):
        response._content = json.dumps(body).encode("utf-8")
    else:
        response._content = str(body).encode("utf-8")
    response.encoding = "utf-8"
    return response


@pytest.fixture
def captured() -> List[Dict[str, Any]]:
    return []


def _patch_post(monkeypatch: pytest.MonkeyPatch, calls: List[Dict[str, Any]], result: Any) -> None:
    def fake_post(url: str, **kwargs: Any) -> requests.Response:
        calls.append({"url": url, **kwargs})
        if isinstance(result, BaseException):
            raise result
        return result

    monkeypatch.setattr(llm.requests, "post", fake_post)


def _chat(client: CompletionClient) -> Dict[str, Any]:
    return client.chat(
        model="openai/gpt-3.5-turbo",
        messages=[{"role": "user", "content": "hi"}],
        max_tokens=1000,
        temperature=0.7,
        top_p=0.9,
    )


def test_chat_posts_bearer_json(monkeypatch: pytest.MonkeyPatch, captured: List[Dict[str, Any]]) -> None:
    body = {"choices": [{"message": {"content": "hello"}}]}
    _patch_post(monkeypatch, captured, _response(200, body))
    client = CompletionClient(URL, "sk-test", timeout=12)
    assert _chat(client) == body
    call = captured[0]
    assert call["url"] == URL
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["headers"]["Content-Type"] == "application/json"
    assert call["timeout"] == 12
    assert json.loads(call["data"]) == {
        "model": "openai/gpt-3.5-turbo",
        "messages": [{"role": "user", "content": "hi"}],
        "max_tokens": 1000,
        "temperature": 0.7,
        "top_p": 0.9,
    }


def test_429_raises_rate_limit_error(monkeypatch: pytest.MonkeyPatch, captured: List[Dict[str, Any]]) -> None:
    _patch_post(monkeypatch, captured, _response(429, "too many requests"))
    with pytest.raises(RateLimitError) as excinfo:
        _chat(CompletionClient(URL, "sk-test"))
    assert excinfo.value.status_code == 429
    assert excinfo.value.body == "too many requests"


@pytest.mark.parametrize("status_code", [400, 401, 500, 503])
def test_error_status_raises_completion_error(
    monkeypatch: pytest.MonkeyPatch, captured: List[Dict[str, Any]], status_code: int
) -> None:
    _patch_post(monkeypatch, captured, _response(status_code, {"error": "nope"}))
    with pytest.raises(CompletionError) as excinfo:
        _chat(CompletionClient(URL, "sk-test"))
    assert not isinstance(excinfo.value, RateLimitError)
    assert excinfo.value.status_code == status_code
    assert "nope" in excinfo.value.body


def test_transport_failure_is_wrapped(monkeypatch: pytest.MonkeyPatch, captured: List[Dict[str, Any]]) -> None:
    _patch_post(monkeypatch, captured, requests.ConnectionError("dns failure"))
    with pytest.raises(CompletionError) as excinfo:
        _chat(CompletionClient(URL, "sk-test"))
    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)


def test_non_json_body_raises(monkeypatch: pytest.MonkeyPatch, captured: List[Dict[str, Any]]) -> None:
    _patch_post(monkeypatch, captured, _response(200, "<html>gateway</html>"))
    with pytest.raises(CompletionError):
        _chat(CompletionClient(URL, "sk-test"))


def test_extract_reply_reads_first_choice() -> None:
    payload = {
        "choices": [
            {"message": {"content": "first"}},
            {"message": {"content": "second"}},
        ]
    }
    assert extract_reply(payload, "placeholder") == "first"


@pytest.mark.parametrize("payload", [[], "text", {"id": "x"}, {"choices": "nope"}])
def test_extract_reply_rejects_malformed_payload(payload: Any) -> None:
    with pytest.raises(CompletionError):
        extract_reply(payload, "placeholder")
