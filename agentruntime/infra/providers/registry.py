"""Builds the LLM provider a session talks to."""

from __future__ import annotations

import logging

import httpx

from agentruntime.config import AppConfig, ProviderConfig
from agentruntime.infra.providers.anthropic import AnthropicProvider
from agentruntime.infra.providers.base import LLMProvider
from agentruntime.infra.providers.fallback import FallbackProvider
from agentruntime.infra.providers.llamacpp import DEFAULT_BASE_URL, LlamaCppProvider
from agentruntime.models.provider import ProviderType

logger = logging.getLogger(__name__)

FALLBACK_ORDER = (ProviderType.ANTHROPIC, ProviderType.LLAMACPP)


def _check_llamacpp_available(base_url: str) -> bool:
    """Probe ``/health`` on a llama.cpp server (synchronous, short timeout)."""
    try:
        with httpx.Client(timeout=2.0) as client:
            return client.get(f"{base_url.rstrip('/')}/health").status_code == 200
    except httpx.HTTPError:
        return False


def _settings(provider_type: ProviderType, config: AppConfig) -> ProviderConfig:
    return config.providers.get(provider_type.value) or ProviderConfig()


def get_provider(provider_type: ProviderType | str, config: AppConfig) -> LLMProvider:
    """Build one provider from its ``[providers.<name>]`` section."""
    if isinstance(provider_type, str):
        try:
            provider_type = ProviderType(provider_type)
        except ValueError:
            raise ValueError(f"Unknown provider type: {provider_type}") from None
    settings = _settings(provider_type, config)
    if provider_type == ProviderType.ANTHROPIC:
        return AnthropicProvider(api_key=settings.api_key, model=settings.default_model)
    return LlamaCppProvider(
        base_url=settings.base_url or DEFAULT_BASE_URL, model=settings.default_model,
    )


def _usable(provider_type: ProviderType, config: AppConfig) -> bool:
    settings = _settings(provider_type, config)
    if provider_type == ProviderType.ANTHROPIC:
        if not settings.api_key:
            logger.debug("Skipping anthropic: no API key configured")
            return False
        return True
    base_url = settings.base_url or DEFAULT_BASE_URL
    if not _check_llamacpp_available(base_url):
        logger.debug("Skipping llamacpp: server not reachable at %s", base_url)
        return False
    return True


def get_provider_with_fallback(config: AppConfig, primary: str = "") -> LLMProvider:
    """Primary provider first, then every other provider that looks usable.

    Anthropic counts as usable with an API key, llama.cpp with a reachable
    server. When nothing is usable the primary is built anyway so its own
    error (a missing key, a refused connection) reaches the user. A single
    usable provider is returned unwrapped.
    """
    try:
        primary_type = ProviderType(primary or config.provider)
    except ValueError:
        logger.warning("Unknown provider '%s', using anthropic", primary or config.provider)
        primary_type = ProviderType.ANTHROPIC

    chain = [primary_type] + [t for t in FALLBACK_ORDER if t != primary_type]
    chosen = [t for t in chain if _usable(t, config)]

    if not chosen:
        return get_provider(primary_type, config)
    if len(chosen) == 1:
        return get_provider(chosen[0], config)

    names = [t.value for t in chosen]
    logger.info("Fallback chain: %s", " -> ".join(names))
    return FallbackProvider([get_provider(t, config) for t in chosen], names)
