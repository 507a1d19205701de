"""
Provider factory: turns an LLMConfig into a BaseLLM adapter.
"""

import structlog

from ..config import LLMConfig, Settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM

logger = structlog.get_logger()

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# openrouter speaks the OpenAI chat API
_ADAPTERS: dict[str, type[BaseLLM]] = {
    "anthropic": AnthropicLLM,
    "openai": OpenAILLM,
    "openrouter": OpenAILLM,
}


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create the provider adapter for ``config``, or for the configured default."""
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    adapter = _ADAPTERS.get(config.provider)
    if adapter is None:
        raise ValueError(f"Unknown LLM provider: {config.provider}")

    base_url = config.base_url
    if config.provider == "openrouter" and not base_url:
        base_url = OPENROUTER_BASE_URL

    if not config.api_key:
        logger.warning("No API key configured", provider=config.provider)

    logger.debug("Creating provider adapter", provider=config.provider, model=config.model)
    return adapter(
        api_key=config.api_key,
        model=config.model,
        base_url=base_url,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
    )
