"""Reviews: image lookups and storing scraped reviews in batches."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import Any, Optional

from goodmeh.batch import (
    BatchResults,
    InsertReviewImagesParams,
    InsertReviewRepliesParams,
    InsertReviewsParams,
    InsertUsersParams,
)
from goodmeh.events import EventBus, EventType, OnReviewsReadyParams, ScrapedReview, assert_handler
from goodmeh.queries import Queries

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 5000

Spawn = Callable[..., Any]


def _spawn_thread(target: Callable[..., Any], *args: Any) -> None:
    threading.Thread(target=target, args=args, daemon=True).start()


def _run_batch(results: BatchResults, what: str) -> None:
    errors: list[Exception] = []

    def collect(_index: int, error: Optional[Exception]) -> None:
        if error is not None:
            errors.append(error)

    results.exec(collect)
    if errors:
        logger.error("failed to insert %s: %s", what, errors[-1])
        raise errors[-1]


class ReviewService:
    """Looks up review images and stores reviews announced by ON_REVIEWS_READY."""

    def __init__(self, queries: Queries, event_bus: EventBus, spawn: Optional[Spawn] = None) -> None:
        self._queries = queries
        self._event_bus = event_bus
        self._spawn = spawn or _spawn_thread
        event_bus.subscribe(
            EventType.ON_REVIEWS_READY, assert_handler(self.insert_reviews, OnReviewsReadyParams)
        )

    def get_reviews_images(self, review_ids: Sequence[str]) -> list[Optional[list[str]]]:
        """Image URLs of each review, in the order of ``review_ids``.

        A review without images gets None.
        """
        rows = self._queries.get_review_image_urls(sorted(review_ids))
        by_id = {row.review_id: row.image_urls for row in rows}
        return [by_id.get(review_id) for review_id in review_ids]

    def _insert_batch(self, reviews: Sequence[ScrapedReview]) -> None:
        if not reviews:
            return
        with self._queries.transaction() as tx:
            _run_batch(
                tx.insert_users(
                    [
                        InsertUsersParams(
                            id=r.user.id,
                            name=r.user.name,
                            photo_uri=r.user.photo_uri,
                            review_count=r.user.review_count,
                            photo_count=r.user.photo_count,
                            rating_count=r.user.rating_count,
                            is_local_guide=r.user.is_local_guide,
                        )
                        for r in reviews
                    ]
                ),
                "users",
            )
            _run_batch(
                tx.insert_reviews(
                    [
                        InsertReviewsParams(
                            id=r.review.id,
                            user_id=r.user.id,
                            rating=r.review.rating,
                            text=r.review.text,
                            created_at=r.review.created_at,
                            place_id=r.review.place_id,
                            price_range=r.review.price_range,
                        )
                        for r in reviews
                    ]
                ),
                "reviews",
            )
            _run_batch(
                tx.insert_review_replies(
                    [
                        InsertReviewRepliesParams(
                            review_id=r.review.id, text=r.reply.text, created_at=r.reply.created_at
                        )
                        for r in reviews
                        if r.reply is not None
                    ]
                ),
                "review replies",
            )
            _run_batch(
                tx.insert_review_images(
                    [
                        InsertReviewImagesParams(review_id=r.review.id, image_url=url)
                        for r in reviews
                        for url in r.image_urls
                    ]
                ),
                "review images",
            )
        logger.info("Inserted %d reviews", len(reviews))

    def _consume(self, payload: OnReviewsReadyParams) -> None:
        count = 0
        pending: list[ScrapedReview] = []
        try:
            for reviews in payload.reviews:
                count += len(reviews)
                if len(pending) + len(reviews) > MAX_BATCH_SIZE:
                    self._insert_batch(pending)
                    pending = []
                pending.extend(reviews)
            self._insert_batch(pending)
        except Exception as error:
            payload.done.set_exception(error)
            return
        logger.info("Finished inserting %d reviews", count)
        payload.done.set_result(None)

    def insert_reviews(self, payload: OnReviewsReadyParams) -> None:
        """Store the announced reviews in the background, each batch in one transaction.

        ``payload.done`` is resolved when all are stored or fails with the error.
        """
        self._spawn(self._consume, payload)