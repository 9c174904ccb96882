"""LLM provider factory with timeout and token limits.

Usage:
    from tabletalk.core.config import get_settings
    from tabletalk.services.llm_service.llm import get_llm

    # Code generation (low temperature)
    llm = get_llm(get_settings(), mode="code")

    response = await llm.ainvoke("Hello")

There is no module-level client: every caller builds (or is handed) its own
instance from an explicit ``Settings`` value.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Callable, Dict, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_nvidia_ai_endpoints import ChatNVIDIA
from langchain_ollama import ChatOllama

from tabletalk.core.config import Settings

logger = logging.getLogger(__name__)

# Suppress warnings
warnings.simplefilter("ignore", UserWarning)


# ── Builder functions ─────────────────────────────────────────


def _common_kwargs(config: Settings, temperature: float, top_p: Optional[float], max_tokens: Optional[int]) -> dict:
    """Shared kwargs for all providers with explicit generation control."""
    kwargs = {
        "temperature": temperature,
        "timeout": config.LLM_TIMEOUT,
    }
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    if top_p is not None:
        kwargs["top_p"] = top_p
    return kwargs


def _build_ollama(config: Settings, temperature: float, top_p: Optional[float], max_tokens: Optional[int]):
    """Build Ollama client with generation parameters."""
    kw = _common_kwargs(config, temperature, top_p, max_tokens)
    # ChatOllama names the token budget num_predict
    tokens = kw.pop("max_tokens", None)
    if tokens:
        kw["num_predict"] = tokens
    kw.pop("timeout", None)
    kw.update(
        model=config.OLLAMA_MODEL,
        base_url=config.OLLAMA_BASE_URL,
        client_kwargs={"timeout": config.LLM_TIMEOUT},
    )
    return ChatOllama(**kw)


def _build_google(config: Settings, temperature: float, top_p: Optional[float], max_tokens: Optional[int]):
    """Build Google Gemini client with generation parameters."""
    kw = _common_kwargs(config, temperature, top_p, max_tokens)
    kw.update(
        model=config.GOOGLE_MODEL,
        google_api_key=config.GOOGLE_API_KEY,
    )
    return ChatGoogleGenerativeAI(**kw)


def _build_nvidia(config: Settings, temperature: float, top_p: Optional[float], max_tokens: Optional[int]):
    """Build NVIDIA client with generation parameters."""
    kw = _common_kwargs(config, temperature, top_p, max_tokens)
    kw.pop("timeout", None)
    kw.update(
        model=config.NVIDIA_MODEL,
        api_key=config.NVIDIA_API_KEY,
        model_kwargs={"chat_template_kwargs": {"thinking": False}},  # disable 'thinking'
    )
    return ChatNVIDIA(**kw)


_PROVIDERS: Dict[str, Callable[..., BaseChatModel]] = {
    "OLLAMA": _build_ollama,
    "GOOGLE": _build_google,
    "NVIDIA": _build_nvidia,
}


# ── Public API ────────────────────────────────────────────────


def get_llm(
    config: Settings,
    mode: str = "chat",
    temperature: Optional[float] = None,
    top_p: Optional[float] = None,
    max_tokens: Optional[int] = None,
    provider: Optional[str] = None,
) -> Any:
    """Return a LangChain chat model with tiered temperature.

    Args:
        config: Settings to read provider, model and limits from.
        mode: Temperature tier — "code" (generation), "chat" (summaries),
              "creative" (suggested questions). Only used when
              temperature is not explicitly set.
        temperature: Explicit override for generation temperature.
        top_p: Nucleus sampling parameter (default: LLM_TOP_P).
        max_tokens: Max tokens to generate (default: LLM_MAX_TOKENS).
        provider: Override the configured provider.
    """
    temp_map = {
        "code": config.LLM_TEMPERATURE_CODE,
        "chat": config.LLM_TEMPERATURE_CHAT,
        "creative": config.LLM_TEMPERATURE_CREATIVE,
    }

    temp = temperature if temperature is not None else temp_map.get(mode, config.LLM_TEMPERATURE_CHAT)
    p = top_p if top_p is not None else config.LLM_TOP_P
    tokens = max_tokens if max_tokens is not None else config.LLM_MAX_TOKENS

    active_provider = (provider or config.LLM_PROVIDER).upper()
    builder = _PROVIDERS.get(active_provider)
    if builder is None:
        logger.warning(f"Unknown LLM_PROVIDER '{active_provider}', falling back to OLLAMA")
        builder = _PROVIDERS["OLLAMA"]

    logger.debug(f"Building {active_provider} client (mode={mode}, temperature={temp})")
    return builder(config, temp, p, tokens)


def response_text(response: Any) -> str:
    """Extract the text of a chat model reply (message object or plain string)."""
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # Some providers return content blocks
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return str(content or "").strip()
