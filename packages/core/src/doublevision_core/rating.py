"""Reviewer rating (ELO) engine.

Each moderated review is scored as a game against a fixed reference reviewer
rated 1000. The AI moderation confidence sets how decisive the result was,
and long approved reviews earn a quality bonus. Everything here is pure.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

K_FACTOR = 32
REFERENCE_RATING = 1000
MIN_RATING = 0
MAX_RATING = 3000


@dataclass(frozen=True)
class RatingTier:
    name: str
    icon: str


# Highest threshold first.
_TIERS = (
    (1800, RatingTier("Master", "👑")),
    (1500, RatingTier("Expert", "💎")),
    (1200, RatingTier("Advanced", "⭐")),
    (900, RatingTier("Intermediate", "📸")),
)
_BOTTOM_TIER = RatingTier("Beginner", "🌱")


def expected_score(rating: float, opponent_rating: float = REFERENCE_RATING) -> float:
    """Logistic probability that ``rating`` beats ``opponent_rating``."""
    return 1 / (1 + 10 ** ((opponent_rating - rating) / 400))


def _quality_multiplier(approved: bool, word_count: int) -> float:
    if approved and word_count >= 100:
        return 1.2
    if approved and word_count >= 75:
        return 1.1
    return 1.0


def compute_new_rating(current_rating: int, approved: bool, ai_confidence: float, word_count: int) -> int:
    """Return the reviewer's rating after one moderated review.

    Confidence 0 yields an actual score of 0.5 (a draw); confidence 100 is a
    full win when approved and a full loss when rejected. The result is
    rounded and clamped to [MIN_RATING, MAX_RATING].
    """
    confidence = min(max(ai_confidence, 0), 100) / 100
    if approved:
        actual = 0.5 + 0.5 * confidence
    else:
        actual = 0.5 - 0.5 * confidence

    change = K_FACTOR * (actual - expected_score(current_rating)) * _quality_multiplier(approved, word_count)
    new_rating = max(MIN_RATING, min(MAX_RATING, current_rating + change))
    # Half-up rounding; round() would send x.5 to the nearest even integer.
    return int(math.floor(new_rating + 0.5))


def rating_tier(rating: int) -> RatingTier:
    for threshold, tier in _TIERS:
        if rating >= threshold:
            return tier
    return _BOTTOM_TIER


def preview_rating_change(current_rating: int, approved: bool, ai_confidence: float) -> tuple[int, str]:
    """Return (magnitude, direction) of the change for a minimum-length review.

    direction is "up", "down" or "neutral".
    """
    change = compute_new_rating(current_rating, approved, ai_confidence, 50) - current_rating
    if change > 0:
        direction = "up"
    elif change < 0:
        direction = "down"
    else:
        direction = "neutral"
    return abs(change), direction
