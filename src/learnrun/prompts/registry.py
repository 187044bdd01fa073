"""Prompt Registry - Load prompts from Markdown files.

Prompts live next to this module as ``<group>/<name>.md`` and support
``{variable}`` substitution.

Usage:
    from learnrun.prompts.registry import get_prompt

    prompt = get_prompt(
        "feedback/enrich",
        expected_category="CPU_LOAD",
        answer="Memory is 80%.",
    )
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

PROMPTS_DIR = Path(__file__).parent


def _get_prompt_uncached(key: str) -> str:
    """Load raw prompt from file without caching.

    Args:
        key: Path-like key, e.g., "feedback/enrich"

    Raises:
        FileNotFoundError: If prompt file doesn't exist
    """
    file_path = PROMPTS_DIR / f"{key}.md"
    if not file_path.exists():
        raise FileNotFoundError(f"Prompt not found: {key} (looked at {file_path})")

    return file_path.read_text(encoding="utf-8")


@lru_cache(maxsize=64)
def _get_cached_prompt(key: str) -> str:
    """Cached version of prompt loading."""
    return _get_prompt_uncached(key)


def get_prompt(key: str, use_cache: bool = True, **variables: object) -> str:
    """Load prompt from file and substitute variables.

    Unknown ``{placeholders}`` are left untouched.

    Args:
        key: Path-like key, e.g., "agent/answer_system"
        use_cache: Whether to use cached version (default True)
        **variables: Variables to substitute

    Returns:
        Prompt string with variables substituted
    """
    content = _get_cached_prompt(key) if use_cache else _get_prompt_uncached(key)

    for var_name, var_value in variables.items():
        content = content.replace(f"{{{var_name}}}", str(var_value))

    return content.strip()


def list_prompts() -> list[str]:
    """List all available prompt keys, sorted."""
    prompts = []
    for path in PROMPTS_DIR.rglob("*.md"):
        key = str(path.relative_to(PROMPTS_DIR)).replace(".md", "").replace("\\", "/")
        prompts.append(key)
    return sorted(prompts)


def clear_cache() -> None:
    """Clear the prompt cache."""
    _get_cached_prompt.cache_clear()
