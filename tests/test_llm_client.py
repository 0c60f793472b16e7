import pytest
import requests

import db
import llm_client
from llm_client import ChatCompletionsClient, LLMCallError, PromptSpec


class _Resp:
    def __init__(self, payload, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


def _spec(**overrides):
    values = {
        "prompt_id": "learning_hints",
        "prompt_version": "hints.v1",
        "system": "You are a coach.",
        "user": "Provide learning hints.",
        "temperature": 0.4,
        "max_tokens": 200,
        "user_id": "alice",
    }
    values.update(overrides)
    return PromptSpec(**values)


def _metrics():
    return [dict(row) for row in db._query("SELECT * FROM llm_metrics ORDER BY id")]


def test_submit_returns_content_and_records_metrics(monkeypatch, temp_db):
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured.update(url=url, json=json, headers=headers, timeout=timeout)
        return _Resp(
            {
                "choices": [{"message": {"content": '{"hints": []}'}}],
                "usage": {"prompt_tokens": 210, "completion_tokens": 35},
            }
        )

    monkeypatch.delenv("COACH_MODEL", raising=False)
    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    client = ChatCompletionsClient("https://llm.test/v1/chat/completions", "sk-test", timeout=5)

    assert client.submit(_spec()) == '{"hints": []}'

    assert captured["url"] == "https://llm.test/v1/chat/completions"
    assert captured["timeout"] == 5
    assert captured["headers"]["Authorization"] == "Bearer sk-test"
    payload = captured["json"]
    assert payload["model"] == "gpt-4o-mini"
    assert payload["max_tokens"] == 200
    assert payload["response_format"] == {"type": "json_object"}
    assert payload["messages"][0] == {"role": "system", "content": "You are a coach."}

    rows = _metrics()
    assert len(rows) == 1
    assert rows[0]["user_id"] == "alice"
    assert rows[0]["model_id"] == "gpt-4o-mini"
    assert rows[0]["prompt_id"] == "learning_hints"
    assert rows[0]["tokens_in"] == 210
    assert rows[0]["tokens_out"] == 35
    assert rows[0]["outcome"] == "ok"
    assert rows[0]["latency_ms"] >= 0


def test_recommendation_role_uses_recommendation_model(monkeypatch, temp_db):
    monkeypatch.setenv("RECOMMENDATION_MODEL", "gpt-4o-2024")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = ChatCompletionsClient("https://llm.test", None)
    payload = client.build_payload(_spec(model_role="recommendation"))
    assert payload["model"] == "gpt-4o-2024"
    assert payload["response_format"] == {"type": "json_object"}
    assert "Authorization" not in client._headers()


def test_http_error_raises_llm_call_error(monkeypatch, temp_db):
    monkeypatch.setattr(
        llm_client.requests,
        "post",
        lambda url, json=None, headers=None, timeout=None: _Resp({}, status_code=429, text="rate limited"),
    )
    client = ChatCompletionsClient("https://llm.test", "sk-test")

    with pytest.raises(LLMCallError, match="LLM-HTTP 429"):
        client.submit(_spec())
    assert _metrics()[0]["outcome"] == "error"


def test_timeout_is_recorded(monkeypatch, temp_db):
    def fake_post(url, json=None, headers=None, timeout=None):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    with pytest.raises(LLMCallError, match="timeout"):
        ChatCompletionsClient("https://llm.test", "sk-test", timeout=2).submit(_spec())
    assert _metrics()[0]["outcome"] == "timeout"


@pytest.mark.parametrize("payload", [{"choices": []}, ValueError("bad json"), {"error": "nope"}])
def test_unexpected_payload_raises(monkeypatch, temp_db, payload):
    monkeypatch.setattr(
        llm_client.requests,
        "post",
        lambda url, json=None, headers=None, timeout=None: _Resp(payload),
    )
    with pytest.raises(LLMCallError):
        ChatCompletionsClient("https://llm.test", "sk-test").submit(_spec())


def test_null_content_becomes_empty_string(monkeypatch, temp_db):
    monkeypatch.setattr(
        llm_client.requests,
        "post",
        lambda url, json=None, headers=None, timeout=None: _Resp({"choices": [{"message": {"content": None}}]}),
    )
    assert ChatCompletionsClient("https://llm.test", "sk-test").submit(_spec()) == ""


def test_metric_failures_do_not_break_calls(monkeypatch):
    class _BrokenMetricsDb:
        def record_llm_metric(self, **kwargs):
            raise RuntimeError("metrics table locked")

    monkeypatch.setattr(
        llm_client.requests,
        "post",
        lambda url, json=None, headers=None, timeout=None: _Resp({"choices": [{"message": {"content": "{}"}}]}),
    )
    client = ChatCompletionsClient("https://llm.test", "sk-test", db_module=_BrokenMetricsDb())
    assert client.submit(_spec()) == "{}"
