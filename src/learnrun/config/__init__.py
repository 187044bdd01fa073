"""Configuration package for learning runs."""

from learnrun.config.app_config import (
    AppConfig,
    ProviderConfig,
    RunPolicyConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "ProviderConfig",
    "RunPolicyConfig",
    "clear_config_cache",
    "get_provider_config",
    "load_app_config",
]
