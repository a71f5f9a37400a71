"""Workflow error taxonomy.

Caller-facing precondition failures (Unauthorized, NotAssigned,
DuplicateReview, InvalidInput, RateLimited, UploadNotAllowed,
ReviewQuotaNotMet, NotFound) are raised to the caller. ModerationUnavailable
and RatingUpdateFailed are raised inside the background moderation step and
recovered there; they never reach the caller of submit_review.
"""

from __future__ import annotations

from datetime import datetime


class DoubleVisionError(Exception):
    """Base class for every error raised by the workflow."""


class Unauthorized(DoubleVisionError):
    def __init__(self, message: str = "Unauthorized. Please sign in."):
        super().__init__(message)


class NotFound(DoubleVisionError):
    pass


class NotAssigned(DoubleVisionError):
    def __init__(self, message: str = "This photo is not assigned to you for review."):
        super().__init__(message)


class DuplicateReview(DoubleVisionError):
    def __init__(self, message: str = "You have already reviewed this photo."):
        super().__init__(message)


class InvalidInput(DoubleVisionError):
    def __init__(self, message: str, word_count: int | None = None):
        super().__init__(message)
        self.word_count = word_count


class RateLimited(DoubleVisionError):
    def __init__(self, reset_at: datetime):
        super().__init__(f"Too many requests. Please try again after {reset_at.isoformat()}.")
        self.reset_at = reset_at


class UploadNotAllowed(DoubleVisionError):
    pass


class ReviewQuotaNotMet(DoubleVisionError):
    """The user has not completed enough reviews to unlock a capability."""

    def __init__(self, required: int, completed: int, action: str):
        super().__init__(f"You must complete {required} photo reviews before {action}. Completed: {completed}.")
        self.required = required
        self.completed = completed


class ModerationUnavailable(DoubleVisionError):
    pass


class RatingUpdateFailed(DoubleVisionError):
    pass
