"""Input validation and sanitisation for review and upload requests."""

from __future__ import annotations

import re
from dataclasses import dataclass

MIN_WORDS = 50
MAX_WORDS = 500
MIN_UNIQUE_RATIO = 0.3

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
MIN_IMAGE_BYTES = 1024
MAX_IMAGE_BYTES = 10 * 1024 * 1024

_ANGLE_BRACKETS_RE = re.compile(r"[<>]")
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+=", re.IGNORECASE)
_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


@dataclass
class CommentCheck:
    valid: bool
    sanitized: str
    word_count: int
    error: str | None = None


def sanitize_string(value: str | None) -> str:
    """Strip markup that could be rendered as HTML or script."""
    if not value or not isinstance(value, str):
        return ""
    cleaned = _ANGLE_BRACKETS_RE.sub("", value.strip())
    cleaned = _JS_PROTOCOL_RE.sub("", cleaned)
    return _EVENT_HANDLER_RE.sub("", cleaned)


def validate_review_comment(comment: str | None) -> CommentCheck:
    """Check word-count bounds and reject excessively repetitive text.

    The repetition check compares distinct (case-insensitive) words to the
    total word count; below MIN_UNIQUE_RATIO the comment is treated as spam.
    """
    if not comment or not isinstance(comment, str):
        return CommentCheck(False, "", 0, "Comment is required")

    sanitized = sanitize_string(comment)
    words = sanitized.split()
    word_count = len(words)

    if word_count < MIN_WORDS:
        return CommentCheck(
            False, sanitized, word_count, f"Comment must be at least {MIN_WORDS} words. Current: {word_count} words."
        )
    if word_count > MAX_WORDS:
        return CommentCheck(
            False, sanitized, word_count, f"Comment must not exceed {MAX_WORDS} words. Current: {word_count} words."
        )

    unique_ratio = len({w.lower() for w in words}) / word_count
    if unique_ratio < MIN_UNIQUE_RATIO:
        return CommentCheck(False, sanitized, word_count, "Comment appears to be spam or excessively repetitive.")

    return CommentCheck(True, sanitized, word_count)


def validate_review_score(score) -> tuple[int | None, str | None]:
    """Return (score, None) for an integer in [1, 5], otherwise (None, error)."""
    if score is None:
        return None, "Score is required"
    if isinstance(score, bool):
        return None, "Score must be an integer"
    if isinstance(score, int):
        if score < 1 or score > 5:
            return None, "Score must be between 1 and 5"
        return score, None
    try:
        number = float(score)
    except (TypeError, ValueError, OverflowError):
        return None, "Score must be an integer"
    if not number.is_integer():
        return None, "Score must be an integer"
    value = int(number)
    if value < 1 or value > 5:
        return None, "Score must be between 1 and 5"
    return value, None


def validate_record_id(record_id: str | None) -> str | None:
    """Return an error message if ``record_id`` is not a 24-char hex id."""
    if not record_id or not isinstance(record_id, str):
        return "ID is required and must be a string"
    if not _ID_RE.match(record_id):
        return "Invalid ID format"
    return None


def validate_image(content_type: str, size: int) -> str | None:
    """Return an error message if the upload is not an acceptable image."""
    if content_type not in ALLOWED_IMAGE_TYPES:
        return "Only JPEG, PNG, and WebP images are allowed"
    if size > MAX_IMAGE_BYTES:
        return "File size must not exceed 10MB"
    if size < MIN_IMAGE_BYTES:
        return "File size is too small"
    return None
