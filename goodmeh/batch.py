"""Batched inserts of users, reviews, replies and review images."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from goodmeh.db import Database

ExecCallback = Callable[[int, Optional[Exception]], Any]

INSERT_REVIEW_IMAGES = """
INSERT INTO review_image (review_id, image_url)
VALUES (:review_id, :image_url) ON CONFLICT (review_id, image_url) DO NOTHING
"""

INSERT_REVIEW_REPLIES = """
INSERT INTO review_reply (review_id, text, created_at)
VALUES (:review_id, :text, :created_at) ON CONFLICT (review_id) DO
UPDATE
SET text = EXCLUDED.text,
    created_at = EXCLUDED.created_at
"""

INSERT_REVIEWS = """
INSERT INTO review (id, user_id, rating, text, created_at, place_id, price_range)
VALUES (:id, :user_id, :rating, :text, :created_at, :place_id, :price_range)
ON CONFLICT (id) DO
UPDATE
SET user_id = EXCLUDED.user_id,
    rating = EXCLUDED.rating,
    text = EXCLUDED.text,
    created_at = EXCLUDED.created_at,
    place_id = EXCLUDED.place_id,
    price_range = EXCLUDED.price_range
"""

INSERT_USERS = """
INSERT INTO "user" (id, name, photo_uri, review_count, photo_count, rating_count, is_local_guide)
VALUES (:id, :name, :photo_uri, :review_count, :photo_count, :rating_count, :is_local_guide)
ON CONFLICT (id) DO
UPDATE
SET name = EXCLUDED.name,
    photo_uri = EXCLUDED.photo_uri,
    review_count = EXCLUDED.review_count,
    photo_count = EXCLUDED.photo_count,
    rating_count = EXCLUDED.rating_count,
    is_local_guide = EXCLUDED.is_local_guide
"""


class BatchAlreadyClosedError(RuntimeError):
    """The batch was closed before its statement could run."""

    def __init__(self) -> None:
        super().__init__("batch already closed")


class BatchResults:
    """One statement queued once per parameter set.

    :meth:`exec` runs them and reports each outcome to a callback; a batch
    closed before that reports every item as :class:`BatchAlreadyClosedError`.
    """

    def __init__(self, db: Database, sql: str, params: Sequence[Mapping[str, Any]]) -> None:
        self._db = db
        self._sql = sql
        self._params = list(params)
        self._closed = False

    def __len__(self) -> int:
        return len(self._params)

    def _run(self, params: Mapping[str, Any]) -> Optional[Exception]:
        try:
            self._db.execute(self._sql, params)
        except SQLAlchemyError as error:
            return error
        return None

    def exec(self, callback: Optional[ExecCallback] = None) -> None:
        """Run every statement, passing ``(index, error or None)`` to the callback."""
        try:
            for index, params in enumerate(self._params):
                error = BatchAlreadyClosedError() if self._closed else self._run(params)
                if callback is not None:
                    callback(index, error)
        finally:
            self._closed = True

    def close(self) -> None:
        """Run any statements not yet run and raise the first failure."""
        if self._closed:
            return
        self._closed = True
        first_error: Optional[Exception] = None
        for params in self._params:
            error = self._run(params)
            if first_error is None:
                first_error = error
        if first_error is not None:
            raise first_error


@dataclass
class InsertReviewImagesParams:
    review_id: str
    image_url: str


@dataclass
class InsertReviewRepliesParams:
    review_id: str
    text: str
    created_at: datetime


@dataclass
class InsertReviewsParams:
    id: str
    user_id: str
    rating: int
    text: str
    created_at: datetime
    place_id: str
    price_range: Optional[int] = None


@dataclass
class InsertUsersParams:
    id: str
    name: str
    photo_uri: Optional[str] = None
    review_count: int = 0
    photo_count: int = 0
    rating_count: int = 0
    is_local_guide: bool = False


def _batch(db: Database, sql: str, params: Sequence[Any]) -> BatchResults:
    return BatchResults(db, sql, [dataclasses.asdict(item) for item in params])


def insert_review_images(db: Database, params: Sequence[InsertReviewImagesParams]) -> BatchResults:
    """Queue image inserts; duplicates are ignored."""
    return _batch(db, INSERT_REVIEW_IMAGES, params)


def insert_review_replies(db: Database, params: Sequence[InsertReviewRepliesParams]) -> BatchResults:
    """Queue reply upserts keyed by review."""
    return _batch(db, INSERT_REVIEW_REPLIES, params)


def insert_reviews(db: Database, params: Sequence[InsertReviewsParams]) -> BatchResults:
    """Queue review upserts."""
    return _batch(db, INSERT_REVIEWS, params)


def insert_users(db: Database, params: Sequence[InsertUsersParams]) -> BatchResults:
    """Queue user upserts."""
    return _batch(db, INSERT_USERS, params)