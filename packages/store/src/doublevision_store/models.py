"""DoubleVision record types.

Decoupled from doublevision_core so the store layer can be used on its own.
Every record is a top-level entity related to the others only by id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

DEFAULT_RATING = 1000

PHOTO_STATUSES = ("pending", "reviewed", "archived")
MODERATION_STATUSES = ("pending", "approved", "rejected")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    """A reviewer and photo owner.

    ``rating`` only changes after a moderation outcome is known.
    """

    id: str
    name: str
    email: str
    provider: str = "github"  # "google" | "github"
    rating: int = DEFAULT_RATING
    total_reviews: int = 0
    photo_count: int = 0
    joined_at: datetime = field(default_factory=utcnow)
    last_upload: datetime | None = None


@dataclass
class Photo:
    id: str
    user_id: str
    image_url: str
    upload_date: datetime = field(default_factory=utcnow)
    reviews_received: int = 0
    average_score: float | None = None
    status: str = "pending"  # "pending" | "reviewed" | "archived"


@dataclass
class AIAnalysis:
    """Structured judgment returned by the moderation provider."""

    offensive: bool = False
    ai_generated: bool = False
    relevant: bool = False
    confidence: int = 0  # 0-100
    reasoning: str = ""


@dataclass
class Review:
    """A review of one photo by one reviewer.

    Created in "pending" moderation state. ``moderation_status`` and
    ``ai_analysis`` are written once by the moderation step.
    """

    id: str
    photo_id: str
    reviewer_id: str
    score: int
    comment: str
    word_count: int
    moderation_status: str = "pending"  # "pending" | "approved" | "rejected"
    ai_analysis: AIAnalysis = field(default_factory=AIAnalysis)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Assignment:
    id: str
    user_id: str
    photo_id: str
    completed: bool = False
    assigned_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None


@dataclass
class AssignmentStats:
    total_assigned: int = 0
    completed: int = 0
    pending: int = 0
    completion_rate: float = 0.0


@dataclass
class ReviewerStats:
    total_reviews: int = 0
    approved_reviews: int = 0
    rejected_reviews: int = 0
    average_word_count: float = 0.0


@dataclass
class ModerationStats:
    total_reviews: int = 0
    approved: int = 0
    rejected: int = 0
    pending: int = 0
    rejection_rate: float = 0.0
    avg_confidence: float = 0.0
    by_reason: dict[str, int] = field(default_factory=lambda: {"offensive": 0, "irrelevant": 0, "ai_generated": 0})
