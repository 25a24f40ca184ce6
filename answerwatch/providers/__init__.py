from answerwatch.providers.base import BaseProvider, ProviderResponse, TokenUsage
from answerwatch.providers.registry import PLATFORMS, PlatformConfig, build_provider, get_platform_config

__all__ = [
    "PLATFORMS",
    "BaseProvider",
    "PlatformConfig",
    "ProviderResponse",
    "TokenUsage",
    "build_provider",
    "get_platform_config",
]
