"""Platform registry: platform key -> provider, model and client class."""

from dataclasses import dataclass

from answerwatch.core.exceptions import PlatformConfigurationError
from answerwatch.providers.base import BaseProvider
from answerwatch.providers.llm_anthropic import AnthropicProvider
from answerwatch.providers.llm_gemini import GeminiProvider
from answerwatch.providers.llm_openai import OpenAiProvider
from answerwatch.providers.llm_perplexity import PerplexityProvider
from answerwatch.providers.llm_xai import XaiProvider


@dataclass(frozen=True)
class PlatformConfig:
    key: str
    name: str
    provider: str
    model: str


PLATFORMS: dict[str, PlatformConfig] = {
    "chatgpt": PlatformConfig("chatgpt", "ChatGPT", "openai", "gpt-4o"),
    "claude": PlatformConfig("claude", "Claude", "anthropic", "claude-sonnet-4-5"),
    "gemini": PlatformConfig("gemini", "Gemini", "google", "gemini-2.5-flash"),
    "grok": PlatformConfig("grok", "Grok", "xai", "grok-4"),
    "perplexity": PlatformConfig("perplexity", "Perplexity", "perplexity", "sonar"),
}

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "openai": OpenAiProvider,
    "anthropic": AnthropicProvider,
    "google": GeminiProvider,
    "xai": XaiProvider,
    "perplexity": PerplexityProvider,
}

# The platform whose credential also pays for the combined analysis model
ANALYSIS_PLATFORM_KEY = "chatgpt"


def get_platform_config(platform_key: str) -> PlatformConfig:
    config = PLATFORMS.get(platform_key)
    if config is None:
        raise PlatformConfigurationError(f"Platform configuration not found for {platform_key}")
    return config


def build_provider(platform_key: str, api_key: str, model: str | None = None) -> BaseProvider:
    """Instantiate the client for a platform, honouring a per-row model override."""
    config = get_platform_config(platform_key)
    provider_cls = PROVIDER_CLASSES.get(config.provider)
    if provider_cls is None:
        raise PlatformConfigurationError(f"Unsupported provider: {config.provider}")
    if not api_key:
        raise PlatformConfigurationError(f"No API key configured for platform {platform_key}")
    return provider_cls(api_key=api_key, model=model or config.model)
