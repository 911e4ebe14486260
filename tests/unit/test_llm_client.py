"""
Unit tests -- LLM client: mock mode + dispatch.
"""
import pytest

from src.core.config import Settings
from src.llm import client
from src.llm.client import call_llm, get_llm


@pytest.fixture
def no_keys(monkeypatch):
    settings = Settings(openai_api_key="", anthropic_api_key="", llm_provider="mock")
    monkeypatch.setattr(client, "get_settings", lambda: settings)
    return settings


def test_mock_returns_string():
    result = call_llm("Hello world", provider="mock")
    assert isinstance(result, str)


def test_mock_prefix():
    result = call_llm("Hello world", provider="mock")
    assert result.startswith("[MOCK]")


def test_mock_echoes_prompt():
    prompt = "What is the meaning of life?"
    result = call_llm(prompt, provider="mock")
    assert prompt[:20] in result


def test_unknown_provider_raises():
    with pytest.raises(NotImplementedError, match="not supported"):
        call_llm("hi", provider="banana")


def test_openai_missing_key_raises(no_keys):
    """Should raise RuntimeError when key is empty."""
    with pytest.raises(RuntimeError, match="openai_api_key"):
        call_llm("hi", provider="openai")


def test_anthropic_missing_key_raises(no_keys):
    """Should raise RuntimeError when key is empty."""
    with pytest.raises(RuntimeError, match="anthropic_api_key"):
        call_llm("hi", provider="anthropic")


def test_default_provider_is_mock(no_keys):
    """Settings default to mock -- this should work without any keys."""
    result = call_llm("test")
    assert "[MOCK]" in result


def test_get_llm_binds_provider():
    llm = get_llm("mock")
    assert llm("ping").startswith("[MOCK] ping")


def test_get_llm_json_mode_forwarded(monkeypatch):
    seen = {}

    def fake_mock(prompt, system=None, json_mode=False):
        seen["json_mode"] = json_mode
        return "{}"

    monkeypatch.setitem(client._PROVIDERS, "mock", fake_mock)
    assert get_llm("mock", json_mode=True)("x") == "{}"
    assert seen["json_mode"] is True
