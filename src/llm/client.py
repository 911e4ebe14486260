"""
LLM client abstraction -- provider-agnostic wrapper.

Supported providers:
  mock      -- echo back the prompt (for tests / offline dev)
  openai    -- OpenAI Chat Completions
  anthropic -- Anthropic Messages

Configuration is read from Settings (env / .env).  Pipeline stages never call
a provider directly: they receive an ``LLMCallable`` so tests can inject fakes.
"""
from __future__ import annotations

from functools import partial
from typing import Any, Callable

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

LLMCallable = Callable[[str], str]

_DEFAULT_SYSTEM = "You are a helpful analytics assistant."
_JSON_SYSTEM_SUFFIX = " Respond ONLY with a single valid JSON object."


def _call_mock(prompt: str, system: str | None = None, json_mode: bool = False) -> str:
    logger.info("LLM mock mode -- returning echo")
    return f"[MOCK] {prompt[:200]}"


def _call_openai(prompt: str, system: str | None = None, json_mode: bool = False) -> str:
    """Call OpenAI Chat Completions API."""
    settings = get_settings()
    api_key = settings.openai_api_key
    if not api_key:
        raise RuntimeError(
            "openai_api_key is not set.  "
            "Set OPENAI_API_KEY in your .env file or environment."
        )

    try:
        import openai  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "The 'openai' package is not installed.  "
            "Run: pip install openai"
        ) from exc

    kwargs: dict[str, Any] = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    client = openai.OpenAI(api_key=api_key)
    response = client.chat.completions.create(
        model=settings.openai_model,
        messages=[
            {"role": "system", "content": system or _DEFAULT_SYSTEM},
            {"role": "user", "content": prompt},
        ],
        temperature=0.1 if json_mode else 0.0,
        max_tokens=settings.llm_max_tokens,
        **kwargs,
    )
    text = response.choices[0].message.content or ""
    logger.info("OpenAI response (%d chars)", len(text))
    return text


def _call_anthropic(prompt: str, system: str | None = None, json_mode: bool = False) -> str:
    """Call Anthropic Messages API."""
    settings = get_settings()
    api_key = settings.anthropic_api_key
    if not api_key:
        raise RuntimeError(
            "anthropic_api_key is not set.  "
            "Set ANTHROPIC_API_KEY in your .env file or environment."
        )

    try:
        import anthropic  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "The 'anthropic' package is not installed.  "
            "Run: pip install anthropic"
        ) from exc

    system_text = system or _DEFAULT_SYSTEM
    if json_mode:
        system_text += _JSON_SYSTEM_SUFFIX

    client = anthropic.Anthropic(api_key=api_key)
    response = client.messages.create(
        model=settings.anthropic_model,
        max_tokens=settings.llm_max_tokens,
        system=system_text,
        messages=[{"role": "user", "content": prompt}],
    )
    text = response.content[0].text if response.content else ""
    logger.info("Anthropic response (%d chars)", len(text))
    return text


_PROVIDERS: dict[str, Any] = {
    "mock": _call_mock,
    "openai": _call_openai,
    "anthropic": _call_anthropic,
}


def call_llm(
    prompt: str,
    provider: str | None = None,
    system: str | None = None,
    json_mode: bool = False,
) -> str:
    """Send *prompt* to the configured (or overridden) LLM provider.

    Parameters
    ----------
    prompt : str
        The user-turn prompt text.
    provider : str, optional
        Override the provider from settings.  One of: mock, openai, anthropic.
    system : str, optional
        System instruction; a generic analyst persona when omitted.
    json_mode : bool
        Ask the provider for a single JSON object.
    """
    if provider is None:
        provider = get_settings().llm_provider.lower()

    fn = _PROVIDERS.get(provider)
    if fn is None:
        raise NotImplementedError(
            f"LLM provider '{provider}' is not supported.  "
            f"Choose from: {', '.join(_PROVIDERS)}"
        )

    logger.info("Calling LLM provider=%s  prompt_len=%d  json=%s", provider, len(prompt), json_mode)
    return fn(prompt, system=system, json_mode=json_mode)


def get_llm(provider: str | None = None, json_mode: bool = False) -> LLMCallable:
    """Bind a provider into a plain ``prompt -> text`` callable."""
    return partial(call_llm, provider=provider, json_mode=json_mode)
