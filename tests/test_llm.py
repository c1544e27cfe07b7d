import os

import pytest
import requests

from siteforge import llm_client, load_env_file, prompts
from siteforge.errors import GenerationParseError, LLMRequestError, LLMUnavailableError
from siteforge.llm_parsing import parse_generation_json


class FakeResp:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def test_parse_plain_json():
    assert parse_generation_json('{"data": {}, "config": {}}') == {"data": {}, "config": {}}


def test_parse_fenced_json():
    text = 'Here is your site:\n```json\n{"data": {"content": []}}\n```\nEnjoy!'
    assert parse_generation_json(text) == {"data": {"content": []}}


def test_parse_embedded_object():
    assert parse_generation_json('Sure! {"a": {"b": 1}} hope that helps') == {"a": {"b": 1}}


def test_parse_passes_mappings_through():
    obj = {"x": 1}
    assert parse_generation_json(obj) is obj


@pytest.mark.parametrize("text", ["", "   ", "no json here", "{not json}", "[1, 2]"])
def test_parse_failures(text):
    with pytest.raises(GenerationParseError) as info:
        parse_generation_json(text)
    assert str(info.value).startswith("Failed to parse AI response")
    assert info.value.raw_text == text


def test_status_without_key(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "")
    assert llm_client.status() == {"provider": None, "model": None, "has_token": False, "using": "none"}
    with pytest.raises(LLMUnavailableError):
        llm_client.complete("sys", "hi")


def test_complete_posts_messages_request(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "sk-test")
    seen = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        seen.update(url=url, headers=headers, body=json, timeout=timeout)
        return FakeResp(
            payload={
                "content": [{"type": "text", "text": '{"data": '}, {"type": "text", "text": '{}, "config": {}}'}],
                "usage": {"input_tokens": 10, "output_tokens": 5},
                "stop_reason": "end_turn",
            }
        )

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    out = llm_client.generate("be helpful", "make a site", {"type": "object"})
    assert out == {"data": {}, "config": {}}
    assert seen["url"] == llm_client.ANTHROPIC_ENDPOINT
    assert seen["headers"]["x-api-key"] == "sk-test"
    assert seen["headers"]["anthropic-version"] == llm_client.ANTHROPIC_VERSION
    assert seen["body"]["messages"] == [{"role": "user", "content": "make a site"}]
    assert seen["body"]["system"][0]["text"] == "be helpful"
    assert "schema" in seen["body"]["system"][1]["text"]
    assert llm_client.status()["using"] == "anthropic"


def test_complete_http_error(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setattr(llm_client.requests, "post", lambda *a, **k: FakeResp(status_code=529, text="overloaded"))
    with pytest.raises(LLMRequestError, match="status 529"):
        llm_client.complete("sys", "hi")


def test_complete_transport_error(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "sk-test")

    def boom(*a, **k):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(llm_client.requests, "post", boom)
    with pytest.raises(LLMRequestError, match="refused"):
        llm_client.complete("sys", "hi")


def test_complete_non_object_payload(monkeypatch):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "sk-test")
    monkeypatch.setattr(llm_client.requests, "post", lambda *a, **k: FakeResp(payload=["nope"]))
    with pytest.raises(LLMRequestError):
        llm_client.complete("sys", "hi")
    monkeypatch.setattr(llm_client.requests, "post", lambda *a, **k: FakeResp(payload=ValueError("bad")))
    with pytest.raises(LLMRequestError, match="not JSON"):
        llm_client.complete("sys", "hi")


def test_truncated_response_is_logged(monkeypatch, caplog):
    monkeypatch.setattr(llm_client, "ANTHROPIC_API_KEY", "sk-test")
    payload = {"content": [{"type": "text", "text": "{"}], "stop_reason": "max_tokens"}
    monkeypatch.setattr(llm_client.requests, "post", lambda *a, **k: FakeResp(payload=payload))
    caplog.set_level("WARNING", logger="siteforge.llm_client")
    assert llm_client.complete("sys", "hi") == "{"
    assert any("truncated" in r.getMessage() for r in caplog.records)
    with pytest.raises(GenerationParseError):
        llm_client.generate("sys", "hi")


def test_generate_user_prompt_includes_scraped_sites():
    context = {
        "conversationContext": {
            "scrapedWebsites": [
                {"url": "https://example.com", "content": "x" * 5000},
                {"url": "https://two.example", "content": {"markdown": "# Two"}},
                "ignored",
            ]
        }
    }
    text = prompts.build_generate_user_prompt("  a bakery  ", context)
    assert text.startswith("Create a website: a bakery")
    assert "URL: https://example.com" in text
    assert "x" * prompts.CONTEXT_PREVIEW_CHARS in text
    assert "x" * (prompts.CONTEXT_PREVIEW_CHARS + 1) not in text
    assert "# Two" in text


def test_generate_user_prompt_without_context():
    assert prompts.build_generate_user_prompt("cafe", None) == "Create a website: cafe"
    assert prompts.build_generate_user_prompt("cafe", {"conversationContext": "junk"}) == "Create a website: cafe"


def test_update_prompt_carries_current_state():
    text = prompts.build_update_user_prompt("make it blue", {"content": []}, {"components": {"Hero": {}}})
    assert '"Hero"' in text
    assert text.rstrip().endswith("Change request: make it blue")
    assert "complete updated data and config" in prompts.build_update_system_prompt()


def test_env_file_loading(tmp_path, monkeypatch):
    env = tmp_path / ".env"
    env.write_text("# comment\nexport SF_TEST_A='quoted'\nSF_TEST_B=kept\nnot a pair\nSF_TEST_C=\"x\"\n", encoding="utf-8")
    monkeypatch.delenv("SF_TEST_A", raising=False)
    monkeypatch.setenv("SF_TEST_B", "already set")
    monkeypatch.delenv("SF_TEST_C", raising=False)
    applied = load_env_file(env)
    assert applied == {"SF_TEST_A": "quoted", "SF_TEST_C": "x"}
    assert os.environ["SF_TEST_B"] == "already set"
    assert load_env_file(tmp_path / "missing.env") == {}
