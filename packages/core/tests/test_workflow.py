"""Tests for the review workflow, run against a real SQLite store."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from doublevision_core.errors import (
    DuplicateReview,
    InvalidInput,
    NotAssigned,
    NotFound,
    RateLimited,
    ReviewQuotaNotMet,
    Unauthorized,
    UploadNotAllowed,
)
from doublevision_core.gh.issues import BaseIssueTracker
from doublevision_core.providers.base import BaseModerator
from doublevision_core.rate_limit import RateLimiter
from doublevision_core.rating import compute_new_rating
from doublevision_core.workflow import ReviewWorkflow
from doublevision_store.blob import LocalBlobStore
from doublevision_store.models import AIAnalysis
from doublevision_store.sqlite import SQLiteStore

IMAGE = b"\xff\xd8\xff" + b"\x00" * 2048


def _verdict(offensive=False, ai_generated=False, relevant=True, confidence=92, reasoning="Constructive."):
    return json.dumps(
        {
            "isOffensive": offensive,
            "isAiGenerated": ai_generated,
            "isRelevant": relevant,
            "confidence": confidence,
            "reasoning": reasoning,
        }
    )


class _FixedModerator(BaseModerator):
    def __init__(self, response=None, gate: threading.Event | None = None):
        self.response = response or _verdict()
        self.gate = gate

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        if self.gate is not None:
            self.gate.wait(timeout=5)
        return self.response


class _TimeoutModerator(BaseModerator):
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        raise TimeoutError("moderation timed out")


class _Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _comment(n: int = 60) -> str:
    return " ".join(f"detail{i}" for i in range(n))


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(db_path=str(tmp_path / "dv.db"))
    yield s
    s.close()


@pytest.fixture
def make_workflow(store, tmp_path):
    created = []

    def _make(**kwargs):
        kwargs.setdefault("moderator", _FixedModerator())
        kwargs.setdefault("blob_store", LocalBlobStore(upload_dir=str(tmp_path / "uploads")))
        wf = ReviewWorkflow(store=store, **kwargs)
        created.append(wf)
        return wf

    yield _make
    for wf in created:
        wf.close()


def _users(workflow, *names):
    for name in names:
        workflow.register_user(name, name.title(), f"{name}@example.com")


def _photos(store, owner, n=1):
    return [store.create_photo(owner, f"http://img/{owner}/{i}.jpg") for i in range(n)]


def _assigned_photo(store, reviewer="alice", owner="bob"):
    (photo,) = _photos(store, owner)
    store.create_assignments(reviewer, [photo.id])
    return photo


def _complete_quota(store, user_id, owner="zed", n=5):
    photos = _photos(store, owner, n)
    store.create_assignments(user_id, [p.id for p in photos])
    for p in photos:
        store.complete_assignment(user_id, p.id)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestRegisterUser:
    def test_rejoin_with_new_email_updates_profile(self, make_workflow, store):
        wf = make_workflow()
        wf.register_user("alice", "Alice", "a@example.com")

        user = wf.register_user("alice", "Alice A.", "new@example.com")

        assert user.id == "alice"
        assert store.get_user("alice").email == "new@example.com"

    def test_email_of_another_user_is_rejected(self, make_workflow, store):
        wf = make_workflow()
        wf.register_user("alice", "Alice", "a@example.com")

        with pytest.raises(InvalidInput, match="already registered"):
            wf.register_user("mallory", "Mallory", "a@example.com")

        assert store.get_user("alice").name == "Alice"
        assert store.get_user("mallory") is None

    def test_switching_to_taken_email_is_rejected(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice", "bob")

        with pytest.raises(InvalidInput, match="already registered"):
            wf.register_user("bob", "Bob", "alice@example.com")

        assert store.get_user("bob").email == "bob@example.com"

    def test_requires_identity(self, make_workflow):
        with pytest.raises(Unauthorized):
            make_workflow().register_user("", "Nobody", "n@example.com")


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


class TestAssign:
    def test_assigns_up_to_batch_size_excluding_own(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice", "bob")
        _photos(store, "alice", 3)
        others = _photos(store, "bob", 7)

        assigned = wf.assign("alice")

        assert len(assigned) == 5
        assert {a.photo_id for a in assigned} <= {p.id for p in others}

    def test_short_pool_is_not_an_error(self, make_workflow, store):
        wf = make_workflow()
        _photos(store, "bob", 2)
        assert len(wf.assign("alice", target_count=5)) == 2
        assert wf.assign("alice") == []

    def test_requires_identity(self, make_workflow):
        with pytest.raises(Unauthorized):
            make_workflow().assign("")

    def test_get_assignments_returns_pending_before_assigning(self, make_workflow, store):
        wf = make_workflow()
        _photos(store, "bob", 8)
        first = wf.get_assignments("alice")
        again = wf.get_assignments("alice")

        assert len(first) == 5
        assert {a.id for a in again} == {a.id for a in first}

    def test_concurrent_assign_never_duplicates_pairs(self, make_workflow, store):
        wf = make_workflow()
        photo_ids = {p.id for p in _photos(store, "bob", 6)}
        barrier = threading.Barrier(4)
        errors = []

        def worker():
            barrier.wait()
            try:
                wf.assign("alice", target_count=6)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        pending = store.pending_assignments("alice")
        assert errors == []
        assert len(pending) == len({a.photo_id for a in pending})
        assert {a.photo_id for a in pending} == photo_ids

    def test_cleanup_removes_stale_incomplete(self, make_workflow, store):
        clock = _Clock(datetime.now(timezone.utc) + timedelta(days=8))
        wf = make_workflow(clock=clock)
        photos = _photos(store, "bob", 2)
        store.create_assignments("alice", [p.id for p in photos])
        store.complete_assignment("alice", photos[0].id)

        assert wf.cleanup_stale_assignments(days_old=7) == 1
        assert store.get_assignment("alice", photos[1].id) is None


# ---------------------------------------------------------------------------
# Submitting reviews
# ---------------------------------------------------------------------------


class TestSubmitReview:
    def test_approval_raises_rating(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice", "bob")
        photo = _assigned_photo(store)

        review = wf.submit_review("alice", photo.id, 4, _comment())
        wf.wait()

        stored = store.get_review(review.id)
        assert stored.moderation_status == "approved"
        assert stored.ai_analysis.confidence == 92
        assert store.get_user("alice").rating > 1000
        assert store.get_user("alice").total_reviews == 1
        assert store.get_assignment("alice", photo.id).completed is True
        refreshed = store.get_photo(photo.id)
        assert refreshed.reviews_received == 1
        assert refreshed.average_score == pytest.approx(4.0)

    def test_returns_pending_before_moderation_finishes(self, make_workflow, store):
        gate = threading.Event()
        wf = make_workflow(moderator=_FixedModerator(gate=gate))
        _users(wf, "alice", "bob")
        photo = _assigned_photo(store)

        review = wf.submit_review("alice", photo.id, 3, _comment())

        assert review.moderation_status == "pending"
        assert store.get_user("alice").rating == 1000
        gate.set()
        wf.wait()
        assert store.get_review(review.id).moderation_status == "approved"

    def test_moderation_timeout_fails_open(self, make_workflow, store, mocker):
        mocker.patch("doublevision_core.providers.base.time.sleep")
        wf = make_workflow(moderator=_TimeoutModerator())
        _users(wf, "alice", "bob")
        store.update_user_rating("alice", 1500)
        photo = _assigned_photo(store)

        review = wf.submit_review("alice", photo.id, 5, _comment())
        wf.wait()

        stored = store.get_review(review.id)
        assert stored.moderation_status == "approved"
        assert stored.ai_analysis.confidence == 0
        assert "Moderation failed" in stored.ai_analysis.reasoning
        # A confidence-0 update at 1500 would still move the rating.
        assert compute_new_rating(1500, True, 0, 60) != 1500
        assert store.get_user("alice").rating == 1500

    def test_unconfigured_moderator_fails_open(self, make_workflow, store):
        wf = make_workflow(moderator=None)
        _users(wf, "alice", "bob")
        store.update_user_rating("alice", 600)
        photo = _assigned_photo(store)

        review = wf.submit_review("alice", photo.id, 5, _comment())
        wf.wait()

        assert store.get_review(review.id).moderation_status == "approved"
        assert store.get_user("alice").rating == 600

    def test_offensive_review_rejected_and_reported(self, make_workflow, store):
        tracker = MagicMock(spec=BaseIssueTracker)
        wf = make_workflow(
            moderator=_FixedModerator(_verdict(offensive=True, confidence=90, reasoning="Personal attack.")),
            issue_tracker=tracker,
        )
        _users(wf, "alice", "bob")
        photo = _assigned_photo(store)

        review = wf.submit_review("alice", photo.id, 1, _comment())
        wf.wait()

        assert store.get_review(review.id).moderation_status == "rejected"
        assert store.get_user("alice").rating < 1000
        assert store.get_photo(photo.id).average_score is None
        alert = tracker.report_moderation_alert.call_args.args[0]
        assert alert.reason == "offensive"
        assert alert.confidence == 90
        assert alert.review_id == review.id

    def test_issue_tracker_failure_does_not_affect_rating(self, make_workflow, store):
        tracker = MagicMock(spec=BaseIssueTracker)
        tracker.report_moderation_alert.side_effect = RuntimeError("tracker down")
        wf = make_workflow(
            moderator=_FixedModerator(_verdict(relevant=False, confidence=85)),
            issue_tracker=tracker,
        )
        _users(wf, "alice", "bob")
        photo = _assigned_photo(store)

        review = wf.submit_review("alice", photo.id, 2, _comment())
        wf.wait()

        assert store.get_review(review.id).moderation_status == "rejected"
        assert store.get_user("alice").rating < 1000

    def test_rating_update_failure_keeps_decision(self, make_workflow, store, mocker):
        wf = make_workflow()
        _users(wf, "alice", "bob")
        photo = _assigned_photo(store)
        mocker.patch.object(store, "update_user_rating", side_effect=sqlite3.OperationalError("locked"))

        review = wf.submit_review("alice", photo.id, 4, _comment())
        wf.wait()

        stored = store.get_review(review.id)
        assert stored.moderation_status == "approved"
        assert stored.ai_analysis.confidence == 92
        assert store.get_user("alice").rating == 1000

    def test_unassigned_photo_rejected(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice", "bob")
        (photo,) = _photos(store, "bob")

        with pytest.raises(NotAssigned):
            wf.submit_review("alice", photo.id, 4, _comment())
        assert not store.has_reviewed("alice", photo.id)

    def test_second_review_is_duplicate(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice", "bob")
        photo = _assigned_photo(store)
        wf.submit_review("alice", photo.id, 4, _comment())

        with pytest.raises(DuplicateReview):
            wf.submit_review("alice", photo.id, 2, _comment())
        wf.wait()
        assert len(store.reviews_for_photo(photo.id)) == 1

    def test_missing_identity(self, make_workflow):
        with pytest.raises(Unauthorized):
            make_workflow().submit_review(None, "p" * 24, 4, _comment())

    def test_rate_limited(self, make_workflow, store):
        wf = make_workflow(rate_limiter=RateLimiter(limit=1, window_seconds=60))
        _users(wf, "alice", "bob")
        first, second = _photos(store, "bob", 2)
        store.create_assignments("alice", [first.id, second.id])
        wf.submit_review("alice", first.id, 4, _comment())

        with pytest.raises(RateLimited) as exc_info:
            wf.submit_review("alice", second.id, 4, _comment())
        assert exc_info.value.reset_at > datetime.now(timezone.utc)

    def test_malformed_photo_id(self, make_workflow):
        with pytest.raises(InvalidInput, match="Invalid ID format"):
            make_workflow().submit_review("alice", "not-an-id", 4, _comment())

    def test_invalid_score(self, make_workflow, store):
        wf = make_workflow()
        photo = _assigned_photo(store)
        with pytest.raises(InvalidInput, match="between 1 and 5"):
            wf.submit_review("alice", photo.id, 6, _comment())

    def test_short_comment_reports_word_count(self, make_workflow, store):
        wf = make_workflow()
        photo = _assigned_photo(store)
        with pytest.raises(InvalidInput) as exc_info:
            wf.submit_review("alice", photo.id, 3, _comment(49))
        assert exc_info.value.word_count == 49
        assert store.get_assignment("alice", photo.id).completed is False

    def test_photo_marked_reviewed_after_five_reviews(self, make_workflow, store):
        wf = make_workflow()
        (photo,) = _photos(store, "bob")
        reviewers = [f"r{i}" for i in range(5)]
        _users(wf, "bob", *reviewers)
        for reviewer in reviewers:
            store.create_assignments(reviewer, [photo.id])
            wf.submit_review(reviewer, photo.id, 4, _comment())
            if reviewer != reviewers[-1]:
                assert store.get_photo(photo.id).status == "pending"
        wf.wait()

        assert store.get_photo(photo.id).status == "reviewed"
        assert store.get_photo(photo.id).reviews_received == 5


# ---------------------------------------------------------------------------
# Moderation outcome
# ---------------------------------------------------------------------------


class TestApplyModerationOutcome:
    def test_idempotent(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice", "bob")
        (photo,) = _photos(store, "bob")
        review = store.create_review(photo.id, "alice", 4, _comment(), 60)
        analysis = AIAnalysis(relevant=True, confidence=100)

        assert wf.apply_moderation_outcome(review.id, analysis) == "approved"
        rating = store.get_user("alice").rating
        assert wf.apply_moderation_outcome(review.id, analysis) is None
        assert store.get_user("alice").rating == rating == 1016

    def test_ai_generated_alone_does_not_reject(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice", "bob")
        (photo,) = _photos(store, "bob")
        review = store.create_review(photo.id, "alice", 4, _comment(), 60)

        status = wf.apply_moderation_outcome(review.id, AIAnalysis(ai_generated=True, relevant=True, confidence=99))
        assert status == "approved"

    def test_unknown_review(self, make_workflow):
        with pytest.raises(NotFound):
            make_workflow().apply_moderation_outcome("x" * 24, AIAnalysis())

    def test_moderate_pending_processes_backlog(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice", "carol", "bob")
        (photo,) = _photos(store, "bob")
        r1 = store.create_review(photo.id, "alice", 4, _comment(), 60)
        r2 = store.create_review(photo.id, "carol", 5, _comment(), 60)

        results = wf.moderate_pending()

        assert results == {r1.id: "approved", r2.id: "approved"}
        assert store.pending_reviews() == []
        assert wf.moderate_review(r1.id) == "approved"

    def test_moderate_missing_review_returns_none(self, make_workflow):
        assert make_workflow().moderate_review("x" * 24) is None


# ---------------------------------------------------------------------------
# Gates: upload and feedback
# ---------------------------------------------------------------------------


class TestUpload:
    def test_requires_review_quota(self, make_workflow):
        wf = make_workflow()
        _users(wf, "alice")
        with pytest.raises(ReviewQuotaNotMet) as exc_info:
            wf.upload_photo("alice", IMAGE, "image/jpeg", "sunset.jpg")
        assert exc_info.value.completed == 0
        assert "Completed: 0" in str(exc_info.value)

    def test_upload_once_per_day(self, make_workflow, store, tmp_path):
        clock = _Clock(datetime(2024, 6, 1, 23, 0, tzinfo=timezone.utc))
        wf = make_workflow(clock=clock)
        _users(wf, "alice")
        _complete_quota(store, "alice")

        photo = wf.upload_photo("alice", IMAGE, "image/jpeg", "Sunset.JPG")

        assert photo.user_id == "alice"
        assert photo.image_url.endswith(".jpg")
        assert photo.image_url.startswith("http://localhost:8000/uploads/photos/alice-")
        assert list((tmp_path / "uploads" / "photos").iterdir())
        assert store.get_user("alice").photo_count == 1
        with pytest.raises(UploadNotAllowed):
            wf.upload_photo("alice", IMAGE, "image/jpeg", "again.jpg")

        clock.now += timedelta(hours=2)  # next UTC day
        assert wf.upload_photo("alice", IMAGE, "image/png", "tomorrow.png").id != photo.id

    def test_rejects_unsupported_image(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "alice")
        _complete_quota(store, "alice")
        with pytest.raises(InvalidInput, match="JPEG, PNG, and WebP"):
            wf.upload_photo("alice", IMAGE, "image/gif", "anim.gif")

    def test_unknown_user(self, make_workflow):
        with pytest.raises(NotFound):
            make_workflow().upload_photo("ghost", IMAGE, "image/jpeg", "x.jpg")


class TestFeedback:
    def test_requires_review_quota(self, make_workflow):
        wf = make_workflow()
        _users(wf, "bob")
        with pytest.raises(ReviewQuotaNotMet):
            wf.get_feedback("bob")

    def test_none_without_photos(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "bob")
        _complete_quota(store, "bob")
        assert wf.get_feedback("bob") is None

    def test_only_approved_reviews(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "bob", "alice", "carol", "dave")
        _complete_quota(store, "bob")
        (photo,) = _photos(store, "bob")
        r1 = store.create_review(photo.id, "alice", 4, _comment(), 60)
        r2 = store.create_review(photo.id, "carol", 2, _comment(), 60)
        store.create_review(photo.id, "dave", 5, _comment(), 60)
        wf.apply_moderation_outcome(r1.id, AIAnalysis(relevant=True, confidence=90))
        wf.apply_moderation_outcome(r2.id, AIAnalysis(relevant=True, confidence=90))

        feedback = wf.get_feedback("bob")

        assert feedback.photo.id == photo.id
        assert feedback.total_reviews == 2
        assert feedback.average_score == pytest.approx(3.0)
        assert feedback.rating_distribution == {1: 0, 2: 1, 3: 0, 4: 1, 5: 0}

    def test_other_users_photo_not_found(self, make_workflow, store):
        wf = make_workflow()
        _users(wf, "bob")
        _complete_quota(store, "bob")
        (photo,) = _photos(store, "carol")
        with pytest.raises(NotFound):
            wf.get_feedback("bob", photo.id)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def test_user_stats(make_workflow, store):
    wf = make_workflow()
    _users(wf, "alice")
    _complete_quota(store, "alice", n=5)

    stats = wf.user_stats("alice")

    assert stats.tier.name == "Intermediate"
    assert stats.assignments.completed == 5
    assert stats.completed_today == 5
    assert stats.can_upload_today is True
    assert stats.feedback_unlocked is True


def test_leaderboard(make_workflow, store):
    wf = make_workflow()
    _users(wf, "alice", "bob")
    store.update_user_rating("bob", 1300)
    assert [u.id for u in wf.leaderboard(1)] == ["bob"]
