"""Review assignment, gating and moderation workflow.

Request path:
    assign() / get_assignments()      → hand out photos to review
    submit_review()                   → validate, persist "pending", schedule moderation
    upload_photo() / get_feedback()   → gated on the completed-review quota

Background path (after submit_review has returned):
    moderate_review() → provider.moderate() → apply_moderation_outcome()
                      → rating update, photo aggregates, issue alert

The quota gate counts completed assignments over the user's whole history,
not just today; the UI's "5 reviews a day" wording is aspirational.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from doublevision_core.errors import (
    DuplicateReview,
    InvalidInput,
    ModerationUnavailable,
    NotAssigned,
    NotFound,
    RateLimited,
    RatingUpdateFailed,
    ReviewQuotaNotMet,
    Unauthorized,
    UploadNotAllowed,
)
from doublevision_core.gh.issues import (
    ALERT_CONFIDENCE_THRESHOLD,
    BaseIssueTracker,
    ModerationAlert,
    NoOpIssueTracker,
)
from doublevision_core.moderation import fail_open_analysis, moderation_decision, rejection_reason
from doublevision_core.providers.base import BaseModerator
from doublevision_core.rate_limit import RateLimiter
from doublevision_core.rating import RatingTier, compute_new_rating, rating_tier
from doublevision_core.validation import (
    validate_image,
    validate_record_id,
    validate_review_comment,
    validate_review_score,
)
from doublevision_store.base import BaseStore, DuplicateRecordError
from doublevision_store.blob import BaseBlobStore
from doublevision_store.models import (
    AIAnalysis,
    Assignment,
    AssignmentStats,
    ModerationStats,
    Photo,
    Review,
    ReviewerStats,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_REVIEW_QUOTA = 5
DEFAULT_BATCH_SIZE = 5
# A photo leaves "pending" once it has this many reviews.
REVIEWS_PER_PHOTO = 5

EMAIL_TAKEN = "That email is already registered to another user."

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_-]")


@dataclass
class PhotoFeedback:
    photo: Photo
    reviews: list[Review]
    total_reviews: int
    average_score: float
    rating_distribution: dict[int, int] = field(default_factory=lambda: {s: 0 for s in range(1, 6)})


@dataclass
class UserStats:
    user: User
    tier: RatingTier
    assignments: AssignmentStats
    reviews: ReviewerStats
    completed_today: int
    can_upload_today: bool
    feedback_unlocked: bool


class ReviewWorkflow:
    """Coordinates the store, moderation provider, issue tracker and blob store.

    Moderation runs on ``executor``; when none is given the workflow owns a
    small thread pool and shuts it down in close().
    """

    def __init__(
        self,
        store: BaseStore,
        moderator: BaseModerator | None = None,
        issue_tracker: BaseIssueTracker | None = None,
        blob_store: BaseBlobStore | None = None,
        rate_limiter: RateLimiter | None = None,
        executor: Executor | None = None,
        review_quota: int = DEFAULT_REVIEW_QUOTA,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._moderator = moderator
        self._issue_tracker = issue_tracker or NoOpIssueTracker()
        self._blob_store = blob_store
        self._rate_limiter = rate_limiter
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="moderation")
        self.review_quota = review_quota
        self.batch_size = batch_size
        self._clock = clock
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()
        # Serialises read-modify-write of ratings across moderation workers.
        self._rating_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Users                                                                #
    # ------------------------------------------------------------------ #

    def register_user(self, user_id: str, name: str, email: str, provider: str = "github") -> User:
        """Create the user or refresh their profile. An email is bound to one user id."""
        if not user_id:
            raise Unauthorized()
        try:
            user = self._store.upsert_user(user_id, name, email, provider)
        except DuplicateRecordError:
            raise InvalidInput(EMAIL_TAKEN) from None
        if user.id != user_id:
            logger.warning("Join as %s rejected: email already belongs to %s.", user_id, user.id)
            raise InvalidInput(EMAIL_TAKEN)
        return user

    def _require_user(self, user_id: str | None) -> User:
        if not user_id:
            raise Unauthorized()
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    # ------------------------------------------------------------------ #
    # Assignments                                                          #
    # ------------------------------------------------------------------ #

    def assign(self, user_id: str, target_count: int | None = None) -> list[Assignment]:
        """Assign up to ``target_count`` random eligible photos to the user.

        Returns only assignments created by this call; an exhausted pool gives
        a shorter (possibly empty) list. The store's (user, photo) uniqueness
        constraint drops pairs a concurrent call assigned first.
        """
        if not user_id:
            raise Unauthorized()
        count = self.batch_size if target_count is None else target_count
        if count <= 0:
            return []
        photos = self._store.sample_reviewable_photos(user_id, count)
        if not photos:
            logger.info("No photos available to assign to %s.", user_id)
            return []
        created = self._store.create_assignments(user_id, [p.id for p in photos])
        logger.info("Assigned %d photo(s) to %s.", len(created), user_id)
        return created

    def get_assignments(self, user_id: str) -> list[Assignment]:
        """Return the user's pending assignments, handing out a new batch if none are left."""
        if not user_id:
            raise Unauthorized()
        pending = self._store.pending_assignments(user_id)
        if pending:
            return pending
        return self.assign(user_id)

    def cleanup_stale_assignments(self, days_old: int = 7) -> int:
        cutoff = self._clock() - timedelta(days=days_old)
        removed = self._store.delete_stale_assignments(cutoff)
        logger.info("Removed %d incomplete assignment(s) older than %d day(s).", removed, days_old)
        return removed

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    def submit_review(self, user_id: str | None, photo_id: str, score, comment: str) -> Review:
        """Persist a review in "pending" state and schedule its moderation.

        Guards, in order: identity, rate limit, a well-formed photo id, no prior
        review for the pair (DuplicateReview regardless of assignment state),
        an incomplete assignment (NotAssigned), then score and comment
        validation.
        """
        if not user_id:
            raise Unauthorized()

        if self._rate_limiter is not None:
            limit = self._rate_limiter.check(f"review:{user_id}")
            if not limit.allowed:
                raise RateLimited(datetime.fromtimestamp(limit.reset_time, tz=timezone.utc))

        id_error = validate_record_id(photo_id)
        if id_error:
            raise InvalidInput(id_error)

        if self._store.has_reviewed(user_id, photo_id):
            raise DuplicateReview()

        assignment = self._store.get_assignment(user_id, photo_id)
        if assignment is None or assignment.completed:
            raise NotAssigned()

        value, score_error = validate_review_score(score)
        if score_error:
            raise InvalidInput(score_error)

        check = validate_review_comment(comment)
        if not check.valid:
            raise InvalidInput(check.error or "Invalid comment", word_count=check.word_count)

        try:
            review = self._store.create_review(photo_id, user_id, value, check.sanitized, check.word_count)
        except DuplicateRecordError:
            # A concurrent submission for the same pair won the insert.
            raise DuplicateReview() from None

        if not self._store.complete_assignment(user_id, photo_id):
            logger.warning("Assignment %s/%s was already completed when review %s landed.", user_id, photo_id, review.id)

        received = self._store.increment_photo_review_count(photo_id)
        if received >= REVIEWS_PER_PHOTO:
            photo = self._store.get_photo(photo_id)
            if photo is not None and photo.status == "pending":
                self._store.set_photo_status(photo_id, "reviewed")

        self._store.increment_review_count(user_id)
        logger.info("Review %s submitted by %s for photo %s.", review.id, user_id, photo_id)

        self._schedule(self.moderate_review, review.id)
        return review

    # ------------------------------------------------------------------ #
    # Moderation (background)                                              #
    # ------------------------------------------------------------------ #

    def moderate_review(self, review_id: str) -> str | None:
        """Moderate one review and apply the outcome.

        Never raises. If the provider is unavailable, or applying the outcome
        throws, the review is approved with confidence 0 and the rating is
        left untouched. Returns the final moderation status, or None if the
        review does not exist.
        """
        review = self._store.get_review(review_id)
        if review is None:
            logger.warning("Review %s not found; nothing to moderate.", review_id)
            return None
        if review.moderation_status != "pending":
            logger.debug("Review %s already moderated (%s).", review_id, review.moderation_status)
            return review.moderation_status

        try:
            if self._moderator is None:
                raise ModerationUnavailable("AI moderation is not configured")
            analysis = self._moderator.moderate(review.comment)
        except ModerationUnavailable as e:
            logger.warning("Moderation unavailable for review %s: %s", review_id, e)
            return self._fail_open(review, str(e))
        except Exception as e:
            logger.error("Unexpected moderation error for review %s (%s): %s", review_id, type(e).__name__, e)
            return self._fail_open(review, type(e).__name__)

        try:
            status = self.apply_moderation_outcome(review_id, analysis)
        except Exception as e:
            logger.error("Failed to apply moderation outcome for review %s: %s", review_id, e)
            return self._fail_open(review, type(e).__name__)
        if status is None:
            current = self._store.get_review(review_id)
            return current.moderation_status if current else None
        return status

    def apply_moderation_outcome(self, review_id: str, analysis: AIAnalysis) -> str | None:
        """Record the decision for a pending review and update the reviewer's rating.

        Idempotent: returns None without side effects if the review is no
        longer pending. Otherwise returns "approved" or "rejected".
        """
        review = self._store.get_review(review_id)
        if review is None:
            raise NotFound(f"Review {review_id} not found.")
        if review.moderation_status != "pending":
            return None

        status = moderation_decision(analysis)
        if not self._store.set_review_moderation(review_id, status, analysis):
            # Another worker moderated it between the read and the write.
            return None
        logger.info("Review %s moderated: %s (%d%% confidence).", review_id, status, analysis.confidence)

        if status == "approved":
            self._refresh_photo_average(review.photo_id)
        elif analysis.confidence >= ALERT_CONFIDENCE_THRESHOLD:
            self._report_rejection(review, analysis)

        try:
            self._update_rating(review, status == "approved", analysis.confidence)
        except RatingUpdateFailed as e:
            logger.warning("Rating update skipped for review %s: %s", review_id, e)
        return status

    def moderate_pending(self, limit: int = 50) -> dict[str, str | None]:
        """Moderate reviews still pending (for example after a restart)."""
        results = {}
        for review in self._store.pending_reviews(limit):
            results[review.id] = self.moderate_review(review.id)
        return results

    def _fail_open(self, review: Review, reason: str) -> str:
        try:
            if self._store.set_review_moderation(review.id, "approved", fail_open_analysis(reason)):
                self._refresh_photo_average(review.photo_id)
        except Exception as e:
            logger.error("Failed to record fail-open approval for review %s: %s", review.id, e)
        return "approved"

    def _update_rating(self, review: Review, approved: bool, confidence: int) -> None:
        try:
            with self._rating_lock:
                reviewer = self._store.get_user(review.reviewer_id)
                if reviewer is None:
                    raise RatingUpdateFailed(f"reviewer {review.reviewer_id} not found")
                new_rating = compute_new_rating(reviewer.rating, approved, confidence, review.word_count)
                self._store.update_user_rating(reviewer.id, new_rating)
        except RatingUpdateFailed:
            raise
        except Exception as e:
            raise RatingUpdateFailed(f"{type(e).__name__}: {e}") from e

        change = new_rating - reviewer.rating
        logger.info(
            "Rating updated for reviewer %s: %d -> %d (%+d)", reviewer.id, reviewer.rating, new_rating, change
        )

    def _refresh_photo_average(self, photo_id: str) -> None:
        try:
            self._store.set_photo_average_score(photo_id, self._store.photo_average_score(photo_id))
        except Exception as e:
            logger.warning("Could not refresh average score for photo %s: %s", photo_id, e)

    def _report_rejection(self, review: Review, analysis: AIAnalysis) -> None:
        alert = ModerationAlert(
            review_id=review.id,
            photo_id=review.photo_id,
            reviewer_id=review.reviewer_id,
            reason=rejection_reason(analysis),
            confidence=analysis.confidence,
            reasoning=analysis.reasoning,
            review_text=review.comment,
        )
        try:
            self._issue_tracker.report_moderation_alert(alert)
        except Exception as e:
            logger.warning("Issue tracker failed for review %s: %s", review.id, e)

    # ------------------------------------------------------------------ #
    # Gates                                                                #
    # ------------------------------------------------------------------ #

    def completed_reviews(self, user_id: str) -> int:
        return self._store.completed_assignment_count(user_id)

    def has_completed_quota(self, user_id: str) -> bool:
        return self.completed_reviews(user_id) >= self.review_quota

    def can_upload_today(self, user: User) -> bool:
        if user.last_upload is None:
            return True
        return user.last_upload.astimezone(timezone.utc).date() < self._clock().astimezone(timezone.utc).date()

    def upload_photo(self, user_id: str | None, data: bytes, content_type: str, filename: str = "") -> Photo:
        """Store a new photo for the user: one per UTC day, after the review quota."""
        user = self._require_user(user_id)

        if not self.can_upload_today(user):
            raise UploadNotAllowed("You've already uploaded a photo today. Come back tomorrow!")
        completed = self.completed_reviews(user.id)
        if completed < self.review_quota:
            raise ReviewQuotaNotMet(self.review_quota, completed, "uploading your own photo")

        image_error = validate_image(content_type, len(data))
        if image_error:
            raise InvalidInput(image_error)
        if self._blob_store is None:
            raise UploadNotAllowed("Photo storage is not configured.")

        now = self._clock()
        if "." in filename:
            extension = filename.rsplit(".", 1)[-1].lower()
        else:
            extension = content_type.split("/")[-1]
        blob_name = (
            f"photos/{_UNSAFE_NAME_RE.sub('_', user.id)}-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:6]}"
            f".{_UNSAFE_NAME_RE.sub('', extension)}"
        )
        image_url = self._blob_store.put(blob_name, data, content_type)

        photo = self._store.create_photo(user.id, image_url)
        self._store.record_photo_upload(user.id, now)
        logger.info("Photo %s uploaded by %s.", photo.id, user.id)
        return photo

    def get_feedback(self, user_id: str | None, photo_id: str | None = None) -> PhotoFeedback | None:
        """Return approved feedback on one of the user's photos (the latest by default).

        Returns None if the user has no photos yet.
        """
        user = self._require_user(user_id)
        completed = self.completed_reviews(user.id)
        if completed < self.review_quota:
            raise ReviewQuotaNotMet(self.review_quota, completed, "viewing feedback")

        if photo_id is not None:
            photo = self._store.get_photo(photo_id)
            if photo is None or photo.user_id != user.id:
                raise NotFound("Photo not found.")
        else:
            latest = self._store.photos_by_user(user.id, limit=1)
            if not latest:
                return None
            photo = latest[0]

        reviews = self._store.reviews_for_photo(photo.id, approved_only=True)
        distribution = {s: 0 for s in range(1, 6)}
        for review in reviews:
            distribution[review.score] += 1
        average = sum(r.score for r in reviews) / len(reviews) if reviews else 0.0
        return PhotoFeedback(
            photo=photo,
            reviews=reviews,
            total_reviews=len(reviews),
            average_score=average,
            rating_distribution=distribution,
        )

    # ------------------------------------------------------------------ #
    # Stats                                                                #
    # ------------------------------------------------------------------ #

    def user_stats(self, user_id: str | None) -> UserStats:
        user = self._require_user(user_id)
        today = self._clock().astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        return UserStats(
            user=user,
            tier=rating_tier(user.rating),
            assignments=self._store.assignment_stats(user.id),
            reviews=self._store.reviewer_stats(user.id),
            completed_today=self._store.completed_assignment_count(user.id, since=today),
            can_upload_today=self.can_upload_today(user),
            feedback_unlocked=self.has_completed_quota(user.id),
        )

    def leaderboard(self, limit: int = 10) -> list[User]:
        return self._store.top_users(limit)

    def moderation_stats(self) -> ModerationStats:
        return self._store.moderation_stats()

    def recent_rejections(self, limit: int = 10) -> list[Review]:
        return self._store.recent_rejected_reviews(limit)

    # ------------------------------------------------------------------ #
    # Background task plumbing                                             #
    # ------------------------------------------------------------------ #

    def _schedule(self, fn, *args) -> None:
        future = self._executor.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _on_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Background moderation task failed: %s", future.exception())

    def wait(self, timeout: float | None = None) -> None:
        """Block until every scheduled moderation task has finished."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait_futures(pending, timeout=timeout)

    def close(self) -> None:
        """Drain background moderation and release the owned executor."""
        self.wait()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
