"""Abstract store interface.

Any storage backend (SQLite, a document database) implements this interface.
The workflow in doublevision_core depends on BaseStore, not on a concrete
backend, so backends are swappable without touching workflow code.

Two invariants must be enforced by the backend itself, not by callers:
  - at most one Assignment per (user_id, photo_id)
  - at most one Review per (reviewer_id, photo_id)
Concurrent callers race on these, so an application-level check is not enough.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from doublevision_store.models import (
        AIAnalysis,
        Assignment,
        AssignmentStats,
        ModerationStats,
        Photo,
        Review,
        ReviewerStats,
        User,
    )


class StoreError(Exception):
    """Base class for store failures."""


class DuplicateRecordError(StoreError):
    """Raised when a write would violate a uniqueness constraint."""


class BaseStore(ABC):
    """Pluggable persistence layer for users, photos, reviews and assignments.

    Lookups return None (or an empty list) when nothing matches; they never
    raise for a missing record.
    """

    # ------------------------------------------------------------------ #
    # Users                                                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def upsert_user(self, user_id: str, name: str, email: str, provider: str) -> User:
        """Create a user, or refresh the profile fields of an existing id.

        Returns the stored record. If the email already belongs to a
        different id, nothing is written and that other user is returned.
        Changing a known id's email to one held by another user raises
        DuplicateRecordError. Rating and counters are only initialised on
        insert.
        """

    @abstractmethod
    def get_user(self, user_id: str) -> User | None:
        """Return the user or None."""

    @abstractmethod
    def update_user_rating(self, user_id: str, rating: int) -> None:
        """Overwrite the user's rating."""

    @abstractmethod
    def increment_review_count(self, user_id: str) -> None:
        """Add one to the user's total_reviews."""

    @abstractmethod
    def record_photo_upload(self, user_id: str, uploaded_at: datetime) -> None:
        """Add one to photo_count and set last_upload."""

    @abstractmethod
    def top_users(self, limit: int = 10) -> list[User]:
        """Return users ordered by rating, highest first."""

    # ------------------------------------------------------------------ #
    # Photos                                                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_photo(self, user_id: str, image_url: str) -> Photo:
        """Persist a new photo in "pending" status."""

    @abstractmethod
    def get_photo(self, photo_id: str) -> Photo | None:
        """Return the photo or None."""

    @abstractmethod
    def photos_by_user(self, user_id: str, limit: int = 10) -> list[Photo]:
        """Return the user's photos, newest first."""

    @abstractmethod
    def sample_reviewable_photos(self, user_id: str, count: int) -> list[Photo]:
        """Return up to ``count`` random photos the user may be assigned.

        Excludes the user's own photos and photos already assigned to them,
        and only includes photos in "pending" or "reviewed" status.
        """

    @abstractmethod
    def increment_photo_review_count(self, photo_id: str) -> int:
        """Add one to reviews_received and return the new count."""

    @abstractmethod
    def set_photo_status(self, photo_id: str, status: str) -> None:
        """Set the photo lifecycle status."""

    @abstractmethod
    def set_photo_average_score(self, photo_id: str, average_score: float | None) -> None:
        """Set the photo's running average score."""

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_review(self, photo_id: str, reviewer_id: str, score: int, comment: str, word_count: int) -> Review:
        """Persist a new review in "pending" moderation state.

        Raises DuplicateRecordError if the reviewer already reviewed the photo.
        """

    @abstractmethod
    def get_review(self, review_id: str) -> Review | None:
        """Return the review or None."""

    @abstractmethod
    def has_reviewed(self, reviewer_id: str, photo_id: str) -> bool:
        """Return True if a review exists for the pair."""

    @abstractmethod
    def reviews_for_photo(self, photo_id: str, approved_only: bool = False) -> list[Review]:
        """Return the photo's reviews, newest first."""

    @abstractmethod
    def pending_reviews(self, limit: int = 50) -> list[Review]:
        """Return reviews awaiting moderation, oldest first."""

    @abstractmethod
    def set_review_moderation(self, review_id: str, status: str, analysis: AIAnalysis) -> bool:
        """Write the moderation outcome if the review is still pending.

        Returns False when the review was already moderated (or is missing),
        so the outcome is written at most once.
        """

    @abstractmethod
    def photo_average_score(self, photo_id: str) -> float | None:
        """Average score over approved reviews, or None if there are none."""

    @abstractmethod
    def reviewer_stats(self, reviewer_id: str) -> ReviewerStats:
        """Aggregate the reviewer's review counts by moderation status."""

    @abstractmethod
    def recent_rejected_reviews(self, limit: int = 10) -> list[Review]:
        """Return the most recently created rejected reviews."""

    @abstractmethod
    def moderation_stats(self) -> ModerationStats:
        """Aggregate moderation outcomes across all reviews."""

    # ------------------------------------------------------------------ #
    # Assignments                                                          #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_assignments(self, user_id: str, photo_ids: list[str]) -> list[Assignment]:
        """Create incomplete assignments, skipping pairs that already exist.

        Returns only the assignments this call actually created.
        """

    @abstractmethod
    def get_assignment(self, user_id: str, photo_id: str) -> Assignment | None:
        """Return the assignment for the pair or None."""

    @abstractmethod
    def pending_assignments(self, user_id: str) -> list[Assignment]:
        """Return the user's incomplete assignments, oldest first."""

    @abstractmethod
    def complete_assignment(self, user_id: str, photo_id: str) -> bool:
        """Flip an incomplete assignment to completed.

        Returns False if there was no incomplete assignment for the pair.
        """

    @abstractmethod
    def completed_assignment_count(self, user_id: str, since: datetime | None = None) -> int:
        """Count the user's completed assignments, optionally since a time."""

    @abstractmethod
    def assignment_stats(self, user_id: str) -> AssignmentStats:
        """Aggregate the user's assignments."""

    @abstractmethod
    def delete_stale_assignments(self, older_than: datetime) -> int:
        """Delete incomplete assignments assigned before ``older_than``; return the count."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional. Subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """
