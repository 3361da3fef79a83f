"""Places: lookups, scrape requests and storing what a scrape returns."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from goodmeh.db import NoRowsError
from goodmeh.events import (
    EventBus,
    EventType,
    OnReviewsReadyParams,
    ScrapedPlace,
    ScrapedReview,
)
from goodmeh.models import Place, PlaceReviewRow, Request, RequestStatus
from goodmeh.queries import Queries

logger = logging.getLogger(__name__)

REVIEW_SCRAPE_INTERVAL = timedelta(days=7)
RANDOM_PLACES_LIMIT = 10

CollectorFactory = Callable[[str], tuple[ScrapedPlace, Iterable[Sequence[ScrapedReview]]]]
Spawn = Callable[..., Any]


def _spawn_thread(target: Callable[..., Any], *args: Any) -> None:
    threading.Thread(target=target, args=args, daemon=True).start()


def _age(moment: datetime) -> timedelta:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - moment


class PlaceService:
    """Reads places and starts scrapes of places that are missing or stale.

    ``collector_factory(place_id)`` returns the scraped place and an iterable
    of review batches. ``spawn(target, *args)`` runs work in the background.
    """

    def __init__(
        self,
        queries: Queries,
        event_bus: EventBus,
        collector_factory: CollectorFactory,
        spawn: Optional[Spawn] = None,
    ) -> None:
        self._queries = queries
        self._event_bus = event_bus
        self._collector_factory = collector_factory
        self._spawn = spawn or _spawn_thread

    def get_random_places(self) -> list[Place]:
        """Up to ten places in random order."""
        return self._queries.get_random_places(RANDOM_PLACES_LIMIT)

    def get_place_reviews(self, place_id: str, page: int, per_page: int) -> list[PlaceReviewRow]:
        """One page of a place's reviews, newest first."""
        return self._queries.get_place_reviews(place_id, per_page, page * per_page)

    def get_place_images(self, place_id: str, page: int, per_page: int) -> list[str]:
        """One page of the image URLs of a place's reviews, newest first."""
        return self._queries.get_place_image_urls(place_id, per_page, page * per_page)

    def get_place_names(self) -> dict[str, str]:
        """Names of all places, keyed by place id."""
        return {row.id: row.name for row in self._queries.get_place_names()}

    def insert_place(self, place: ScrapedPlace) -> None:
        """Store a scraped place and flag its statistics for recomputation."""
        details = place.place
        self._queries.insert_place(
            details.id,
            details.name,
            details.user_rating_count,
            details.image_url,
            True,
            details.primary_type,
            details.lat,
            details.lng,
        )

    def insert_place_fields(self, place: ScrapedPlace) -> None:
        """Announce the place's fields, then link the place to each of them."""
        self._event_bus.publish(EventType.INSERT_NEW_FIELDS, place.fields)
        categories = {c.name: c.id for c in self._queries.get_field_categories()}
        for category_name, field_name in place.fields:
            self._queries.insert_place_field(
                place.place.id, field_name, categories.get(category_name, 0)
            )

    def _mark_failed(self, place_id: str) -> None:
        try:
            self._queries.set_request_failed(place_id, RequestStatus.SCRAPING, True)
        except Exception:
            logger.exception("failed to mark request for %s as failed", place_id)

    def _collect_and_store(self, place_id: str) -> None:
        place, reviews = self._collector_factory(place_id)
        logger.info("Scraped place %s", place_id)
        self._event_bus.publish(EventType.ON_PLACE_SCRAPE, place.place)
        logger.info("Inserting place %s", place_id)
        self.insert_place(place)
        logger.info("Inserting place fields %s", place_id)
        self.insert_place_fields(place)
        payload = OnReviewsReadyParams(reviews=reviews)
        self._event_bus.publish(EventType.ON_REVIEWS_READY, payload)
        payload.done.result()
        self._queries.after_review_insert(place_id)

    def scrape_place(self, place_id: str, later_than: Optional[datetime] = None) -> None:
        """Scrape a place and its reviews and store them.

        The scraping request is recorded first and removed on success; any
        later failure leaves it marked as failed.
        """
        logger.info("Scraping reviews for place %s", place_id)
        try:
            self._queries.insert_request_or_set_failed_false(place_id, RequestStatus.SCRAPING)
        except Exception:
            logger.exception("failed to insert request")
            return
        try:
            self._collect_and_store(place_id)
        except Exception:
            logger.exception("failed to scrape place %s", place_id)
            self._mark_failed(place_id)
            return
        try:
            self._queries.delete_request(place_id, RequestStatus.SCRAPING)
        except Exception:
            logger.exception("failed to delete request")
        self._event_bus.publish(EventType.ON_REVIEWS_INSERT_END, place_id)

    def request_place(self, place_id: str) -> Optional[Place]:
        """Return the stored place, starting a scrape when one is due.

        Returns None while a first scrape of the place is in progress or has
        just been started.
        """
        try:
            place: Optional[Place] = self._queries.get_place_by_id(place_id)
        except NoRowsError:
            place = None
        try:
            request: Optional[Request] = self._queries.get_request(place_id, RequestStatus.SCRAPING)
        except NoRowsError:
            request = None

        request_failed = request is not None and request.failed
        if place is None and request is not None and not request.failed:
            return None

        last_scraped = place.last_scraped if place is not None else None
        if (
            last_scraped is not None
            and _age(last_scraped) < REVIEW_SCRAPE_INTERVAL
            and not request_failed
        ):
            return place

        self._spawn(self.scrape_place, place_id, last_scraped)
        return place