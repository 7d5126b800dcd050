"""Provider registry and LLM selection."""

import structlog

from config import Settings
from events.bus import EventBus
from llm.base import BaseLLM
from llm.errors import ConfigurationError, NoLLMAvailableError
from llm.mock import MockLLM
from llm.providers import (
    AnthropicProvider,
    GoogleProvider,
    LMStudioProvider,
    OllamaProvider,
    OpenAIProvider,
)
from models.schemas import LLMTier

logger = structlog.get_logger(__name__)

PROVIDERS: dict[str, type[BaseLLM]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GoogleProvider,
    "ollama": OllamaProvider,
    "lmstudio": LMStudioProvider,
}


def create_llm(
    settings: Settings,
    name: str,
    model: str | None = None,
    event_bus: EventBus | None = None,
) -> BaseLLM:
    """Build the LLM for the named provider configuration.

    Args:
        settings: Application settings.
        name: Key in ``settings.providers``.
        model: Optional model overriding the configured one.
        event_bus: Bus receiving LLM call events.

    Raises:
        ConfigurationError: If the provider is unknown, disabled or its
            vendor is unsupported.
    """
    if settings.use_mock_llm:
        return MockLLM(model=f"mock-{name}", event_bus=event_bus)

    config = settings.providers.get(name)
    if config is None:
        raise ConfigurationError(f"Provider '{name}' is not configured")
    if not config.enabled:
        raise ConfigurationError(f"Provider '{name}' is disabled in configuration")

    provider_cls = PROVIDERS.get(config.provider.lower())
    if provider_cls is None:
        raise ConfigurationError(f"Unsupported provider: {config.provider}")

    return provider_cls(
        model or config.model,
        api_key=config.api_key,
        base_url=config.base_url,
        fallback_model=settings.llm_fallback_model,
        max_retries=settings.llm_max_retries,
        retry_delay=settings.llm_retry_delay,
        timeout_seconds=settings.llm_request_timeout_seconds,
        max_tool_steps=settings.tools.max_tool_steps,
        event_bus=event_bus,
    )


def _candidates(settings: Settings, *names: str | None) -> list[str]:
    ordered: list[str] = []
    for name in [*names, *settings.enabled_providers()]:
        if name and name not in ordered:
            ordered.append(name)
    return ordered


async def get_best_llm(
    settings: Settings,
    provider_name: str | None = None,
    preferred_provider: str | None = None,
    event_bus: EventBus | None = None,
) -> BaseLLM:
    """Return the first available LLM.

    Candidates are tried in order: the explicit provider, the preferred
    provider, then every enabled provider in declaration order.

    Raises:
        NoLLMAvailableError: If no candidate is usable and reachable.
    """
    candidates = _candidates(settings, provider_name, preferred_provider)

    for name in candidates:
        try:
            llm = create_llm(settings, name, event_bus=event_bus)
        except ConfigurationError as e:
            logger.info("llm_candidate_skipped", provider=name, reason=str(e))
            continue
        if await llm.is_available():
            logger.info("llm_selected", provider=name, model=llm.model)
            return llm

    raise NoLLMAvailableError(candidates)


def provider_for_tier(settings: Settings, tier: LLMTier) -> str | None:
    """Configured provider name for a tier; None for HYBRID."""
    if tier == LLMTier.LOCAL:
        return settings.local_provider
    if tier == LLMTier.REMOTE:
        return settings.remote_provider
    return None


async def create_llm_for_tier(
    settings: Settings,
    tier: LLMTier,
    event_bus: EventBus | None = None,
) -> BaseLLM | None:
    """Return an available LLM for a LOCAL or REMOTE tier.

    Returns None for HYBRID, when no provider is configured for the tier, or
    when the configured provider is unusable; callers keep their current LLM.
    """
    name = provider_for_tier(settings, tier)
    if name is None:
        return None
    try:
        llm = create_llm(settings, name, event_bus=event_bus)
    except ConfigurationError as e:
        logger.warning("tier_llm_unusable", tier=tier.value, provider=name, reason=str(e))
        return None
    if not await llm.is_available():
        logger.warning("tier_llm_unavailable", tier=tier.value, provider=name)
        return None
    return llm
