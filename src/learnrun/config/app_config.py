"""Application configuration loader.

Loads centralized configuration from data/config/learnrun.yaml (or the file
named by LEARNRUN_CONFIG) with built-in defaults for anything missing.

Usage:
    from learnrun.config.app_config import load_app_config, get_provider_config

    config = load_app_config()
    max_attempts = config.run.max_attempts
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/learnrun.yaml")


@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class RunPolicyConfig:
    """Policy knobs for learning runs."""

    max_attempts: int = 5
    mastery_threshold: float = 0.8
    feedback_enrichment: bool = False
    enrichment_timeout: int = 10
    default_provider: str = "lmstudio"


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    run: RunPolicyConfig = field(default_factory=RunPolicyConfig)
    paths: dict[str, str] = field(default_factory=dict)

    @property
    def db_path(self) -> Path:
        """Database file location."""
        return Path(self.paths.get("db_path", "db/learnrun.db"))


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "providers": {
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
            "openai": {
                "base_url": None,
                "default_model": "gpt-4o-mini",
                "api_key_env": "OPENAI_API_KEY",
            },
            "anthropic": {
                "base_url": None,
                "default_model": "claude-sonnet-4-20250514",
                "api_key_env": "ANTHROPIC_API_KEY",
            },
        },
        "run": {
            "max_attempts": 5,
            "mastery_threshold": 0.8,
            "feedback_enrichment": False,
            "enrichment_timeout": 10,
            "default_provider": "lmstudio",
        },
        "paths": {
            "db_path": "db/learnrun.db",
            "curriculum_dir": "data/curriculum",
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object.

    Missing sections fall back to defaults key by key.
    """
    defaults = _get_defaults()

    providers = {}
    provider_data = {**defaults["providers"], **(data.get("providers") or {})}
    for name, pconfig in provider_data.items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    run_data = {**defaults["run"], **(data.get("run") or {})}
    max_attempts = int(run_data["max_attempts"])
    if max_attempts < 1:
        logger.warning("invalid_max_attempts", value=max_attempts)
        max_attempts = defaults["run"]["max_attempts"]

    run = RunPolicyConfig(
        max_attempts=max_attempts,
        mastery_threshold=float(run_data["mastery_threshold"]),
        feedback_enrichment=bool(run_data["feedback_enrichment"]),
        enrichment_timeout=int(run_data["enrichment_timeout"]),
        default_provider=run_data["default_provider"],
    )

    paths = {**defaults["paths"], **(data.get("paths") or {})}

    return AppConfig(providers=providers, run=run, paths=paths)


def _config_file() -> Path:
    env_path = os.environ.get("LEARNRUN_CONFIG")
    return Path(env_path) if env_path else CONFIG_FILE


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    config_file = _config_file()
    if config_file.exists():
        logger.debug("loading_app_config", source=str(config_file))
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = {}

    _cached_config = _parse_config(data)
    return _cached_config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider.

    Args:
        provider: Provider name (e.g., "lmstudio", "openai")

    Returns:
        ProviderConfig or None if provider not found.
    """
    config = load_app_config()
    return config.providers.get(provider)


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
