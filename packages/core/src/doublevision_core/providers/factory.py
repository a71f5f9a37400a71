"""Moderator selection from configuration."""

from __future__ import annotations

import logging

from doublevision_core.providers.base import BaseModerator

logger = logging.getLogger(__name__)


def get_moderator(config: dict) -> BaseModerator | None:
    """Build the configured moderator, or None when moderation is disabled.

    A missing API key disables moderation rather than failing: reviews then
    take the fail-open path.
    """
    model = config.get("model", "anthropic")
    if model in (None, "none"):
        return None
    if model == "anthropic":
        key = config.get("anthropic_api_key")
        if not key:
            logger.warning("ANTHROPIC_API_KEY not set; AI moderation is disabled.")
            return None
        from doublevision_core.providers.anthropic import AnthropicModerator

        return AnthropicModerator(api_key=key, model=config.get("moderation_model"))
    if model == "openai":
        key = config.get("openai_api_key")
        if not key:
            logger.warning("OPENAI_API_KEY not set; AI moderation is disabled.")
            return None
        from doublevision_core.providers.openai import OpenAIModerator

        return OpenAIModerator(api_key=key, model=config.get("moderation_model"))
    raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic', 'openai' or 'none'.")
