"""Typed queries over the application's tables."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from itertools import groupby
from operator import itemgetter
from typing import Any, Optional

from sqlalchemy import bindparam, text

from goodmeh import batch
from goodmeh.batch import (
    BatchResults,
    InsertReviewImagesParams,
    InsertReviewRepliesParams,
    InsertReviewsParams,
    InsertUsersParams,
)
from goodmeh.db import Database
from goodmeh.models import (
    FieldCategory,
    Place,
    PlaceName,
    PlaceReviewRow,
    Request,
    Review,
    ReviewImageUrls,
    ReviewReply,
    User,
)

_PLACE_COLUMNS = (
    "id, name, rating, weighted_rating, user_rating_count, summary, last_scraped, "
    "image_url, recompute_stats, primary_type, business_summary, price_range, "
    "earliest_review_date, lat, lng"
)

GET_FIELD_CATEGORIES = """
SELECT id, name
FROM field_category
"""

INSERT_FIELD = """
INSERT INTO field (name, category_id)
VALUES (:name, :category_id) ON CONFLICT (name, category_id) DO NOTHING
"""

AFTER_REVIEW_INSERT = """
UPDATE place
SET last_scraped = CURRENT_TIMESTAMP,
    recompute_stats = TRUE
WHERE id = :id
"""

GET_PLACE_BY_ID = f"""
SELECT {_PLACE_COLUMNS}
FROM place
WHERE id = :id
"""

GET_PLACE_IMAGE_URLS = """
SELECT review_image.image_url
FROM review_image
    INNER JOIN review ON review_image.review_id = review.id
WHERE review.place_id = :place_id
ORDER BY review.created_at DESC
LIMIT :limit OFFSET :offset
"""

GET_PLACE_NAMES = """
SELECT place.id, place.name
FROM place
"""

GET_RANDOM_PLACES = f"""
SELECT {_PLACE_COLUMNS}
FROM place
ORDER BY RANDOM()
LIMIT :limit
"""

INSERT_PLACE = """
INSERT INTO place (
        id, name, user_rating_count, image_url, recompute_stats, primary_type, lat, lng
    )
VALUES (
        :id, :name, :user_rating_count, :image_url, :recompute_stats, :primary_type, :lat, :lng
    ) ON CONFLICT (id) DO
UPDATE
SET name = EXCLUDED.name,
    user_rating_count = EXCLUDED.user_rating_count,
    image_url = EXCLUDED.image_url,
    recompute_stats = EXCLUDED.recompute_stats,
    primary_type = EXCLUDED.primary_type,
    lat = EXCLUDED.lat,
    lng = EXCLUDED.lng
"""

INSERT_PLACE_FIELD = """
INSERT INTO place_field (place_id, field_id)
VALUES (
        :place_id,
        (
            SELECT id
            FROM field
            WHERE name = :name
                AND category_id = :category_id
        )
    ) ON CONFLICT (place_id, field_id) DO NOTHING
"""

UPDATE_PLACE_SUMMARY = """
UPDATE place
SET summary = :summary
WHERE id = :id
"""

DELETE_REQUEST = """
DELETE FROM request
WHERE place_id = :place_id
    AND status = :status
"""

GET_REQUEST = """
SELECT place_id, created_at, status, failed, batch_job_id
FROM request
WHERE place_id = :place_id
    AND status = :status
"""

INSERT_REQUEST_OR_SET_FAILED_FALSE = """
INSERT INTO request (place_id, created_at, status, batch_job_id)
VALUES (:place_id, CURRENT_TIMESTAMP, :status, :batch_job_id) ON CONFLICT (place_id, status) DO
UPDATE
SET failed = FALSE,
    created_at = CURRENT_TIMESTAMP
"""

SET_REQUEST_FAILED = """
UPDATE request
SET failed = :failed
WHERE place_id = :place_id
    AND status = :status
"""

GET_PLACE_REVIEWS = """
SELECT r.id, r.user_id, r.rating, r.text, r.created_at, r.weight, r.place_id,
    r.price_range, r.summary, r.business_summary,
    u.id, u.name, u.photo_uri, u.review_count, u.photo_count, u.rating_count,
    u.is_local_guide, u.long_review_count, u.score,
    rr.review_id, rr.text, rr.created_at
FROM review r
    INNER JOIN "user" u ON r.user_id = u.id
    LEFT JOIN review_reply rr ON r.id = rr.review_id
WHERE r.place_id = :place_id
ORDER BY r.created_at DESC
LIMIT :limit OFFSET :offset
"""

GET_REVIEW_IMAGE_URLS = text(
    """
SELECT review_image.review_id, review_image.image_url
FROM review_image
WHERE review_image.review_id IN :review_ids
ORDER BY review_image.review_id
"""
).bindparams(bindparam("review_ids", expanding=True))

GET_REVIEWS_WITH_ENOUGH_TEXT = """
SELECT text
FROM review
WHERE place_id = :place_id
    AND text != ''
    AND LENGTH(text) > 50
"""


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _as_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _place_from_row(row: Sequence[Any]) -> Place:
    return Place(
        id=row[0],
        name=row[1],
        rating=float(row[2] or 0.0),
        weighted_rating=float(row[3] or 0.0),
        user_rating_count=row[4],
        summary=row[5],
        last_scraped=_as_datetime(row[6]),
        image_url=row[7],
        recompute_stats=bool(row[8]),
        primary_type=row[9],
        business_summary=row[10],
        price_range=row[11],
        earliest_review_date=_as_datetime(row[12]),
        lat=_as_float(row[13]),
        lng=_as_float(row[14]),
    )


def _review_row(row: Sequence[Any]) -> PlaceReviewRow:
    review = Review(
        id=row[0],
        user_id=row[1],
        rating=row[2],
        text=row[3],
        created_at=_as_datetime(row[4]),
        weight=row[5],
        place_id=row[6],
        price_range=row[7],
        summary=row[8],
        business_summary=row[9],
    )
    user = User(
        id=row[10],
        name=row[11],
        photo_uri=row[12],
        review_count=row[13],
        photo_count=row[14],
        rating_count=row[15],
        is_local_guide=bool(row[16]),
        long_review_count=row[17],
        score=row[18],
    )
    reply = None
    if row[19] is not None:
        reply = ReviewReply(review_id=row[19], text=row[20], created_at=_as_datetime(row[21]))
    return PlaceReviewRow(review=review, user=user, reply=reply)


class Queries:
    """All reads and writes the application makes, bound to one database handle."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def db(self) -> Database:
        return self._db

    def with_tx(self, tx: Database) -> "Queries":
        """The same queries, run inside the given transaction."""
        return Queries(tx)

    @contextmanager
    def transaction(self) -> Iterator["Queries"]:
        """Queries inside a transaction, committed on success, rolled back on error."""
        with self._db.transaction() as tx:
            yield self.with_tx(tx)

    # fields

    def get_field_categories(self) -> list[FieldCategory]:
        return [FieldCategory(id=r[0], name=r[1]) for r in self._db.fetch_all(GET_FIELD_CATEGORIES)]

    def insert_field(self, name: str, category_id: int) -> None:
        self._db.execute(INSERT_FIELD, {"name": name, "category_id": category_id})

    # places

    def after_review_insert(self, place_id: str) -> None:
        """Mark a place as freshly scraped and its statistics as stale."""
        self._db.execute(AFTER_REVIEW_INSERT, {"id": place_id})

    def get_place_by_id(self, place_id: str) -> Place:
        """The place; raises NoRowsError when there is none."""
        return _place_from_row(self._db.fetch_one(GET_PLACE_BY_ID, {"id": place_id}))

    def get_place_image_urls(self, place_id: str, limit: int, offset: int) -> list[str]:
        rows = self._db.fetch_all(
            GET_PLACE_IMAGE_URLS, {"place_id": place_id, "limit": limit, "offset": offset}
        )
        return [row[0] for row in rows]

    def get_place_names(self) -> list[PlaceName]:
        return [PlaceName(id=r[0], name=r[1]) for r in self._db.fetch_all(GET_PLACE_NAMES)]

    def get_random_places(self, limit: int) -> list[Place]:
        return [_place_from_row(r) for r in self._db.fetch_all(GET_RANDOM_PLACES, {"limit": limit})]

    def insert_place(
        self,
        place_id: str,
        name: str,
        user_rating_count: int,
        image_url: Optional[str],
        recompute_stats: bool,
        primary_type: Optional[str],
        lat: Optional[float],
        lng: Optional[float],
    ) -> None:
        """Insert a place or update the scraped details of an existing one."""
        self._db.execute(
            INSERT_PLACE,
            {
                "id": place_id,
                "name": name,
                "user_rating_count": user_rating_count,
                "image_url": image_url,
                "recompute_stats": recompute_stats,
                "primary_type": primary_type,
                "lat": lat,
                "lng": lng,
            },
        )

    def insert_place_field(self, place_id: str, name: str, category_id: int) -> None:
        self._db.execute(
            INSERT_PLACE_FIELD, {"place_id": place_id, "name": name, "category_id": category_id}
        )

    def update_place_summary(self, place_id: str, summary: Optional[str]) -> None:
        self._db.execute(UPDATE_PLACE_SUMMARY, {"summary": summary, "id": place_id})

    # requests

    def delete_request(self, place_id: str, status: int) -> None:
        self._db.execute(DELETE_REQUEST, {"place_id": place_id, "status": int(status)})

    def get_request(self, place_id: str, status: int) -> Request:
        """The request; raises NoRowsError when there is none."""
        row = self._db.fetch_one(GET_REQUEST, {"place_id": place_id, "status": int(status)})
        return Request(
            place_id=row[0],
            created_at=_as_datetime(row[1]),
            status=row[2],
            failed=bool(row[3]),
            batch_job_id=row[4],
        )

    def insert_request_or_set_failed_false(
        self, place_id: str, status: int, batch_job_id: Optional[str] = None
    ) -> None:
        """Create a request, or restart an existing one by clearing its failure."""
        self._db.execute(
            INSERT_REQUEST_OR_SET_FAILED_FALSE,
            {"place_id": place_id, "status": int(status), "batch_job_id": batch_job_id},
        )

    def set_request_failed(self, place_id: str, status: int, failed: bool) -> None:
        self._db.execute(
            SET_REQUEST_FAILED, {"place_id": place_id, "status": int(status), "failed": failed}
        )

    # reviews

    def get_place_reviews(self, place_id: str, limit: int, offset: int) -> list[PlaceReviewRow]:
        """Reviews of a place, newest first, with their authors and replies."""
        rows = self._db.fetch_all(
            GET_PLACE_REVIEWS, {"place_id": place_id, "limit": limit, "offset": offset}
        )
        return [_review_row(row) for row in rows]

    def get_review_image_urls(self, review_ids: Sequence[str]) -> list[ReviewImageUrls]:
        """Image URLs grouped by review, ordered by review id; reviews without images are absent."""
        if not review_ids:
            return []
        rows = self._db.fetch_all(GET_REVIEW_IMAGE_URLS, {"review_ids": list(review_ids)})
        return [
            ReviewImageUrls(review_id=review_id, image_urls=[url for _, url in group])
            for review_id, group in groupby(rows, key=itemgetter(0))
        ]

    def get_reviews_with_enough_text(self, place_id: str) -> list[str]:
        """Texts of a place's reviews longer than 50 characters."""
        rows = self._db.fetch_all(GET_REVIEWS_WITH_ENOUGH_TEXT, {"place_id": place_id})
        return [row[0] for row in rows]

    # batches

    def insert_users(self, params: Sequence[InsertUsersParams]) -> BatchResults:
        return batch.insert_users(self._db, params)

    def insert_reviews(self, params: Sequence[InsertReviewsParams]) -> BatchResults:
        return batch.insert_reviews(self._db, params)

    def insert_review_replies(self, params: Sequence[InsertReviewRepliesParams]) -> BatchResults:
        return batch.insert_review_replies(self._db, params)

    def insert_review_images(self, params: Sequence[InsertReviewImagesParams]) -> BatchResults:
        return batch.insert_review_images(self._db, params)