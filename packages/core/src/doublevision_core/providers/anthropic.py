from __future__ import annotations

from doublevision_core.providers.base import BaseModerator


class AnthropicModerator(BaseModerator):
    MODEL = "claude-sonnet-4-20250514"
    # Moderation wants a repeatable verdict, so sampling is kept near-greedy.
    TEMPERATURE = 0.0

    def __init__(self, api_key: str, model: str | None = None):
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "Moderating with Claude needs the 'anthropic' SDK. "
                "Install it with: pip install 'doublevision[anthropic]'"
            )
        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model or self.MODEL

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        message = self.client.messages.create(
            model=self.model,
            max_tokens=self.MAX_TOKENS,
            temperature=self.TEMPERATURE,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        # Tool-use or thinking blocks carry no verdict text.
        return "".join(block.text for block in message.content if getattr(block, "type", None) == "text").strip()
