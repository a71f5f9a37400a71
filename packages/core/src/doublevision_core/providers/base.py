"""Base moderator implementing the Template Method pattern.

All providers share the same moderation algorithm:
    moderate() → _build_prompt()
               → _call_with_retry() → _call_api()   ← only this differs per provider
               → _parse()

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

Any failure (API errors after retries, unparseable output) surfaces as
ModerationUnavailable so the workflow can apply its fail-open default.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod

from doublevision_core.errors import ModerationUnavailable
from doublevision_store.models import AIAnalysis

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_MAX_TOKENS = 512

SYSTEM_PROMPT = (
    "You are a content moderation system for a photography feedback platform. "
    "You judge review comments written by users about other users' photos."
)


class BaseModerator(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def moderate(self, comment: str) -> AIAnalysis:
        """Classify a review comment.

        Raises ModerationUnavailable when the provider cannot produce a
        well-formed judgment.
        """
        raw = self._call_with_retry(SYSTEM_PROMPT, self._build_prompt(comment))
        return self._parse(raw)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        """Make a single API call and return the raw text response.

        It should raise on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, system_prompt: str, user_prompt: str) -> str:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(system_prompt, user_prompt)
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    raise ModerationUnavailable(f"{self.__class__.__name__}: {e}") from e
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        raise ModerationUnavailable(f"{self.__class__.__name__}: no attempts made")

    def _build_prompt(self, comment: str) -> str:
        return f"""Analyze the following review comment and determine:

1. Is it offensive, inappropriate, or does it contain hate speech/harassment?
2. Does it appear to be AI-generated (generic, template-like, lacks personal perspective)?
3. Is it relevant and constructive feedback about photography?

Review comment:
\"\"\"{comment}\"\"\"

Respond ONLY with valid JSON in this exact format (no markdown, no code blocks):
{{
  "isOffensive": boolean,
  "isAiGenerated": boolean,
  "isRelevant": boolean,
  "confidence": number (0-100),
  "reasoning": "brief explanation"
}}

Guidelines:
- isOffensive: true if it contains profanity, harassment, hate speech, or personal attacks
- isAiGenerated: true if overly generic, template-like, or clearly AI-written
- isRelevant: false if spam, off-topic, or not about photography
- confidence: 0-100, how confident you are in this assessment
- reasoning: 1-2 sentences explaining the decision"""

    def _parse(self, raw: str | None) -> AIAnalysis:
        """Parse the model's raw text into an AIAnalysis.

        Booleans must be real JSON booleans and confidence a number; anything
        else is treated as malformed output.
        """
        if not raw:
            raise ModerationUnavailable(f"{self.__class__.__name__}: empty response")
        cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning(
                "%s: failed to parse response as JSON: %s",
                self.__class__.__name__,
                raw[:200],
            )
            raise ModerationUnavailable(f"{self.__class__.__name__}: malformed response") from e

        if not isinstance(data, dict):
            raise ModerationUnavailable(f"{self.__class__.__name__}: expected a JSON object")

        flags = {}
        for key in ("isOffensive", "isAiGenerated", "isRelevant"):
            value = data.get(key)
            if not isinstance(value, bool):
                raise ModerationUnavailable(f"{self.__class__.__name__}: {key} missing or not a boolean")
            flags[key] = value

        confidence = data.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ModerationUnavailable(f"{self.__class__.__name__}: confidence missing or not a number")

        return AIAnalysis(
            offensive=flags["isOffensive"],
            ai_generated=flags["isAiGenerated"],
            relevant=flags["isRelevant"],
            confidence=int(round(min(max(confidence, 0), 100))),
            reasoning=str(data.get("reasoning", "")),
        )
