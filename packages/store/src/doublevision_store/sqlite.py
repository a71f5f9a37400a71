"""SQLiteStore: local file-based store.

Why SQLite as the default store:
- Batteries included: ships with Python, no extra dependencies.
- UNIQUE indexes give the hard (user, photo) constraints the workflow relies
  on, including across processes sharing the same database file.
- ORDER BY RANDOM() covers the "random eligible photos" query without a
  separate sampling pass.

Schema:
  users        : one row per reviewer, unique by email
  photos       : one row per uploaded photo
  reviews      : one row per review, UNIQUE (reviewer_id, photo_id)
  assignments  : one row per review obligation, UNIQUE (user_id, photo_id)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from datetime import datetime

from doublevision_store.base import BaseStore, DuplicateRecordError, StoreError
from doublevision_store.models import (
    DEFAULT_RATING,
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

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id             TEXT PRIMARY KEY,
    name           TEXT NOT NULL,
    email          TEXT NOT NULL UNIQUE,
    provider       TEXT NOT NULL,
    rating         INTEGER NOT NULL DEFAULT 1000,
    total_reviews  INTEGER NOT NULL DEFAULT 0,
    photo_count    INTEGER NOT NULL DEFAULT 0,
    joined_at      TEXT NOT NULL,
    last_upload    TEXT
);
CREATE INDEX IF NOT EXISTS idx_users_rating ON users (rating DESC);

CREATE TABLE IF NOT EXISTS photos (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    image_url         TEXT NOT NULL,
    upload_date       TEXT NOT NULL,
    reviews_received  INTEGER NOT NULL DEFAULT 0,
    average_score     REAL,
    status            TEXT NOT NULL DEFAULT 'pending'
                      CHECK (status IN ('pending', 'reviewed', 'archived'))
);
CREATE INDEX IF NOT EXISTS idx_photos_user ON photos (user_id, upload_date DESC);
CREATE INDEX IF NOT EXISTS idx_photos_status ON photos (status);

CREATE TABLE IF NOT EXISTS reviews (
    id                 TEXT PRIMARY KEY,
    photo_id           TEXT NOT NULL,
    reviewer_id        TEXT NOT NULL,
    score              INTEGER NOT NULL CHECK (score BETWEEN 1 AND 5),
    comment            TEXT NOT NULL,
    word_count         INTEGER NOT NULL,
    moderation_status  TEXT NOT NULL DEFAULT 'pending'
                       CHECK (moderation_status IN ('pending', 'approved', 'rejected')),
    ai_offensive       INTEGER NOT NULL DEFAULT 0,
    ai_generated       INTEGER NOT NULL DEFAULT 0,
    ai_relevant        INTEGER NOT NULL DEFAULT 0,
    ai_confidence      INTEGER NOT NULL DEFAULT 0,
    ai_reasoning       TEXT NOT NULL DEFAULT '',
    created_at         TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_reviews_reviewer_photo ON reviews (reviewer_id, photo_id);
CREATE INDEX IF NOT EXISTS idx_reviews_photo ON reviews (photo_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_reviews_status ON reviews (moderation_status, created_at);

CREATE TABLE IF NOT EXISTS assignments (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    photo_id      TEXT NOT NULL,
    completed     INTEGER NOT NULL DEFAULT 0,
    assigned_at   TEXT NOT NULL,
    completed_at  TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_assignments_user_photo ON assignments (user_id, photo_id);
CREATE INDEX IF NOT EXISTS idx_assignments_user ON assignments (user_id, completed, assigned_at);
"""


def _new_id() -> str:
    return uuid.uuid4().hex[:24]


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore(BaseStore):
    """Stores DoubleVision records in a local SQLite database file.

    One connection is shared by every thread of the process (the background
    moderation workers included) and guarded by a lock. Separate processes
    or separate SQLiteStore instances on the same file are serialised by
    SQLite's own file locking.
    """

    def __init__(self, db_path: str = ".doublevision.db", timeout: float = 10.0):
        self._conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()

    def _write(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cur = self._conn.execute(sql, params)
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                if "UNIQUE" in str(e):
                    raise DuplicateRecordError(str(e)) from e
                raise StoreError(str(e)) from e
            return cur

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _query_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    # ------------------------------------------------------------------ #
    # Users                                                                #
    # ------------------------------------------------------------------ #

    def upsert_user(self, user_id: str, name: str, email: str, provider: str) -> User:
        with self._lock:
            if self._query_one("SELECT 1 FROM users WHERE id = ?", (user_id,)):
                self._write(
                    "UPDATE users SET name = ?, email = ?, provider = ? WHERE id = ?",
                    (name, email, provider, user_id),
                )
                row = self._query_one("SELECT * FROM users WHERE id = ?", (user_id,))
                return self._row_to_user(row)

            # An email already held by another id is left untouched.
            self._write(
                """
                INSERT INTO users (id, name, email, provider, rating, total_reviews, photo_count, joined_at)
                VALUES (?, ?, ?, ?, ?, 0, 0, ?)
                ON CONFLICT(email) DO NOTHING
                """,
                (user_id, name, email, provider, DEFAULT_RATING, _ts(utcnow())),
            )
            row = self._query_one("SELECT * FROM users WHERE email = ?", (email,))
            return self._row_to_user(row)

    def get_user(self, user_id: str) -> User | None:
        row = self._query_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._row_to_user(row) if row else None

    def update_user_rating(self, user_id: str, rating: int) -> None:
        self._write("UPDATE users SET rating = ? WHERE id = ?", (rating, user_id))

    def increment_review_count(self, user_id: str) -> None:
        self._write("UPDATE users SET total_reviews = total_reviews + 1 WHERE id = ?", (user_id,))

    def record_photo_upload(self, user_id: str, uploaded_at: datetime) -> None:
        self._write(
            "UPDATE users SET photo_count = photo_count + 1, last_upload = ? WHERE id = ?",
            (_ts(uploaded_at), user_id),
        )

    def top_users(self, limit: int = 10) -> list[User]:
        rows = self._query("SELECT * FROM users ORDER BY rating DESC, joined_at ASC LIMIT ?", (limit,))
        return [self._row_to_user(r) for r in rows]

    # ------------------------------------------------------------------ #
    # Photos                                                               #
    # ------------------------------------------------------------------ #

    def create_photo(self, user_id: str, image_url: str) -> Photo:
        photo = Photo(id=_new_id(), user_id=user_id, image_url=image_url)
        self._write(
            """
            INSERT INTO photos (id, user_id, image_url, upload_date, reviews_received, status)
            VALUES (?, ?, ?, ?, 0, ?)
            """,
            (photo.id, photo.user_id, photo.image_url, _ts(photo.upload_date), photo.status),
        )
        return photo

    def get_photo(self, photo_id: str) -> Photo | None:
        row = self._query_one("SELECT * FROM photos WHERE id = ?", (photo_id,))
        return self._row_to_photo(row) if row else None

    def photos_by_user(self, user_id: str, limit: int = 10) -> list[Photo]:
        rows = self._query(
            "SELECT * FROM photos WHERE user_id = ? ORDER BY upload_date DESC LIMIT ?",
            (user_id, limit),
        )
        return [self._row_to_photo(r) for r in rows]

    def sample_reviewable_photos(self, user_id: str, count: int) -> list[Photo]:
        rows = self._query(
            """
            SELECT * FROM photos
            WHERE user_id != ?
              AND status IN ('pending', 'reviewed')
              AND id NOT IN (SELECT photo_id FROM assignments WHERE user_id = ?)
            ORDER BY RANDOM()
            LIMIT ?
            """,
            (user_id, user_id, count),
        )
        return [self._row_to_photo(r) for r in rows]

    def increment_photo_review_count(self, photo_id: str) -> int:
        with self._lock:
            self._write("UPDATE photos SET reviews_received = reviews_received + 1 WHERE id = ?", (photo_id,))
            row = self._query_one("SELECT reviews_received FROM photos WHERE id = ?", (photo_id,))
        return row["reviews_received"] if row else 0

    def set_photo_status(self, photo_id: str, status: str) -> None:
        self._write("UPDATE photos SET status = ? WHERE id = ?", (status, photo_id))

    def set_photo_average_score(self, photo_id: str, average_score: float | None) -> None:
        self._write("UPDATE photos SET average_score = ? WHERE id = ?", (average_score, photo_id))

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    def create_review(self, photo_id: str, reviewer_id: str, score: int, comment: str, word_count: int) -> Review:
        review = Review(
            id=_new_id(),
            photo_id=photo_id,
            reviewer_id=reviewer_id,
            score=score,
            comment=comment,
            word_count=word_count,
        )
        self._write(
            """
            INSERT INTO reviews
              (id, photo_id, reviewer_id, score, comment, word_count, moderation_status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 'pending', ?)
            """,
            (
                review.id,
                review.photo_id,
                review.reviewer_id,
                review.score,
                review.comment,
                review.word_count,
                _ts(review.created_at),
            ),
        )
        return review

    def get_review(self, review_id: str) -> Review | None:
        row = self._query_one("SELECT * FROM reviews WHERE id = ?", (review_id,))
        return self._row_to_review(row) if row else None

    def has_reviewed(self, reviewer_id: str, photo_id: str) -> bool:
        row = self._query_one(
            "SELECT 1 FROM reviews WHERE reviewer_id = ? AND photo_id = ?",
            (reviewer_id, photo_id),
        )
        return row is not None

    def reviews_for_photo(self, photo_id: str, approved_only: bool = False) -> list[Review]:
        if approved_only:
            rows = self._query(
                "SELECT * FROM reviews WHERE photo_id = ? AND moderation_status = 'approved' "
                "ORDER BY created_at DESC",
                (photo_id,),
            )
        else:
            rows = self._query("SELECT * FROM reviews WHERE photo_id = ? ORDER BY created_at DESC", (photo_id,))
        return [self._row_to_review(r) for r in rows]

    def pending_reviews(self, limit: int = 50) -> list[Review]:
        rows = self._query(
            "SELECT * FROM reviews WHERE moderation_status = 'pending' ORDER BY created_at ASC LIMIT ?",
            (limit,),
        )
        return [self._row_to_review(r) for r in rows]

    def set_review_moderation(self, review_id: str, status: str, analysis: AIAnalysis) -> bool:
        cur = self._write(
            """
            UPDATE reviews
            SET moderation_status = ?, ai_offensive = ?, ai_generated = ?, ai_relevant = ?,
                ai_confidence = ?, ai_reasoning = ?
            WHERE id = ? AND moderation_status = 'pending'
            """,
            (
                status,
                int(analysis.offensive),
                int(analysis.ai_generated),
                int(analysis.relevant),
                int(analysis.confidence),
                analysis.reasoning,
                review_id,
            ),
        )
        return cur.rowcount == 1

    def photo_average_score(self, photo_id: str) -> float | None:
        row = self._query_one(
            "SELECT AVG(score) AS avg_score FROM reviews WHERE photo_id = ? AND moderation_status = 'approved'",
            (photo_id,),
        )
        return row["avg_score"] if row else None

    def reviewer_stats(self, reviewer_id: str) -> ReviewerStats:
        row = self._query_one(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(moderation_status = 'approved'), 0) AS approved,
                   COALESCE(SUM(moderation_status = 'rejected'), 0) AS rejected,
                   COALESCE(AVG(word_count), 0) AS avg_words
            FROM reviews WHERE reviewer_id = ?
            """,
            (reviewer_id,),
        )
        return ReviewerStats(
            total_reviews=row["total"],
            approved_reviews=row["approved"],
            rejected_reviews=row["rejected"],
            average_word_count=float(row["avg_words"]),
        )

    def recent_rejected_reviews(self, limit: int = 10) -> list[Review]:
        rows = self._query(
            "SELECT * FROM reviews WHERE moderation_status = 'rejected' ORDER BY created_at DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_review(r) for r in rows]

    def moderation_stats(self) -> ModerationStats:
        counts = {
            r["moderation_status"]: r["n"]
            for r in self._query("SELECT moderation_status, COUNT(*) AS n FROM reviews GROUP BY moderation_status")
        }
        conf = self._query_one(
            "SELECT COALESCE(AVG(ai_confidence), 0) AS avg_conf FROM reviews WHERE moderation_status != 'pending'"
        )
        reasons = self._query_one(
            """
            SELECT COALESCE(SUM(ai_offensive = 1), 0) AS offensive,
                   COALESCE(SUM(ai_relevant = 0), 0) AS irrelevant,
                   COALESCE(SUM(ai_generated = 1), 0) AS ai_generated
            FROM reviews WHERE moderation_status = 'rejected'
            """
        )
        total = sum(counts.values())
        rejected = counts.get("rejected", 0)
        return ModerationStats(
            total_reviews=total,
            approved=counts.get("approved", 0),
            rejected=rejected,
            pending=counts.get("pending", 0),
            rejection_rate=(rejected / total * 100) if total else 0.0,
            avg_confidence=float(conf["avg_conf"]),
            by_reason={
                "offensive": reasons["offensive"],
                "irrelevant": reasons["irrelevant"],
                "ai_generated": reasons["ai_generated"],
            },
        )

    # ------------------------------------------------------------------ #
    # Assignments                                                          #
    # ------------------------------------------------------------------ #

    def create_assignments(self, user_id: str, photo_ids: list[str]) -> list[Assignment]:
        created: list[Assignment] = []
        with self._lock:
            for photo_id in photo_ids:
                assignment = Assignment(id=_new_id(), user_id=user_id, photo_id=photo_id)
                # OR IGNORE: a concurrent caller may have assigned the pair first.
                cur = self._conn.execute(
                    """
                    INSERT OR IGNORE INTO assignments (id, user_id, photo_id, completed, assigned_at)
                    VALUES (?, ?, ?, 0, ?)
                    """,
                    (assignment.id, user_id, photo_id, _ts(assignment.assigned_at)),
                )
                if cur.rowcount == 1:
                    created.append(assignment)
                else:
                    logger.debug("Assignment %s/%s already exists; skipped.", user_id, photo_id)
            self._conn.commit()
        return created

    def get_assignment(self, user_id: str, photo_id: str) -> Assignment | None:
        row = self._query_one(
            "SELECT * FROM assignments WHERE user_id = ? AND photo_id = ?",
            (user_id, photo_id),
        )
        return self._row_to_assignment(row) if row else None

    def pending_assignments(self, user_id: str) -> list[Assignment]:
        rows = self._query(
            "SELECT * FROM assignments WHERE user_id = ? AND completed = 0 ORDER BY assigned_at ASC",
            (user_id,),
        )
        return [self._row_to_assignment(r) for r in rows]

    def complete_assignment(self, user_id: str, photo_id: str) -> bool:
        cur = self._write(
            """
            UPDATE assignments SET completed = 1, completed_at = ?
            WHERE user_id = ? AND photo_id = ? AND completed = 0
            """,
            (_ts(utcnow()), user_id, photo_id),
        )
        return cur.rowcount == 1

    def completed_assignment_count(self, user_id: str, since: datetime | None = None) -> int:
        if since is not None:
            row = self._query_one(
                "SELECT COUNT(*) AS n FROM assignments WHERE user_id = ? AND completed = 1 AND completed_at >= ?",
                (user_id, _ts(since)),
            )
        else:
            row = self._query_one(
                "SELECT COUNT(*) AS n FROM assignments WHERE user_id = ? AND completed = 1",
                (user_id,),
            )
        return row["n"]

    def assignment_stats(self, user_id: str) -> AssignmentStats:
        row = self._query_one(
            """
            SELECT COUNT(*) AS total, COALESCE(SUM(completed), 0) AS done
            FROM assignments WHERE user_id = ?
            """,
            (user_id,),
        )
        total, done = row["total"], row["done"]
        return AssignmentStats(
            total_assigned=total,
            completed=done,
            pending=total - done,
            completion_rate=(done / total * 100) if total else 0.0,
        )

    def delete_stale_assignments(self, older_than: datetime) -> int:
        cur = self._write(
            "DELETE FROM assignments WHERE completed = 0 AND assigned_at < ?",
            (_ts(older_than),),
        )
        return cur.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------ #
    # Row mapping                                                          #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            provider=row["provider"],
            rating=row["rating"],
            total_reviews=row["total_reviews"],
            photo_count=row["photo_count"],
            joined_at=_parse_ts(row["joined_at"]),
            last_upload=_parse_ts(row["last_upload"]),
        )

    @staticmethod
    def _row_to_photo(row: sqlite3.Row) -> Photo:
        return Photo(
            id=row["id"],
            user_id=row["user_id"],
            image_url=row["image_url"],
            upload_date=_parse_ts(row["upload_date"]),
            reviews_received=row["reviews_received"],
            average_score=row["average_score"],
            status=row["status"],
        )

    @staticmethod
    def _row_to_review(row: sqlite3.Row) -> Review:
        return Review(
            id=row["id"],
            photo_id=row["photo_id"],
            reviewer_id=row["reviewer_id"],
            score=row["score"],
            comment=row["comment"],
            word_count=row["word_count"],
            moderation_status=row["moderation_status"],
            ai_analysis=AIAnalysis(
                offensive=bool(row["ai_offensive"]),
                ai_generated=bool(row["ai_generated"]),
                relevant=bool(row["ai_relevant"]),
                confidence=row["ai_confidence"],
                reasoning=row["ai_reasoning"] or "",
            ),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_assignment(row: sqlite3.Row) -> Assignment:
        return Assignment(
            id=row["id"],
            user_id=row["user_id"],
            photo_id=row["photo_id"],
            completed=bool(row["completed"]),
            assigned_at=_parse_ts(row["assigned_at"]),
            completed_at=_parse_ts(row["completed_at"]),
        )
