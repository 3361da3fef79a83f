"""In-process publish/subscribe bus and the payloads carried on it."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Subscriber = Callable[[Any], Any]


class EventType(IntEnum):
    """Kinds of events published on the bus."""

    ON_PLACE_SCRAPE = 0
    ON_REVIEWS_READY = 1
    ON_REVIEWS_INSERT_END = 2
    INSERT_NEW_FIELDS = 3


class _InvalidPayloadError(TypeError):
    """A subscriber received a payload of the wrong type."""


class EventBus:
    """Synchronous event bus: subscribers run in subscription order."""

    def __init__(self) -> None:
        self._subscribers: defaultdict[EventType, list[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: EventType, subscriber: Subscriber) -> None:
        """Register a subscriber for an event type."""
        self._subscribers[event_type].append(subscriber)

    def publish(self, event_type: EventType, payload: Any) -> None:
        """Deliver a payload to every subscriber of the event type.

        A failing subscriber is logged and does not stop the others; a payload
        of the wrong type is a programming error and propagates.
        """
        for subscriber in list(self._subscribers.get(event_type, ())):
            try:
                subscriber(payload)
            except _InvalidPayloadError:
                raise
            except Exception:
                logger.exception("subscriber for %s failed", event_type.name)


def assert_handler(handler: Callable[[T], Any], payload_type: type) -> Subscriber:
    """Wrap a handler so it only accepts payloads of ``payload_type``."""

    def subscriber(payload: Any) -> Any:
        if not isinstance(payload, payload_type):
            raise _InvalidPayloadError("Invalid payload type")
        return handler(payload)

    return subscriber


@dataclass
class ScrapedUser:
    """Author of a scraped review."""

    id: str
    name: str
    photo_uri: str | None = None
    review_count: int = 0
    photo_count: int = 0
    rating_count: int = 0
    is_local_guide: bool = False


@dataclass
class ScrapedReviewData:
    """The review part of a scraped review."""

    id: str
    rating: int
    text: str
    created_at: datetime
    place_id: str
    price_range: int | None = None


@dataclass
class ScrapedReply:
    """An owner's reply to a scraped review."""

    text: str
    created_at: datetime


@dataclass
class ScrapedReview:
    """A review together with its author, reply and images."""

    user: ScrapedUser
    review: ScrapedReviewData
    reply: ScrapedReply | None = None
    image_urls: list[str] = field(default_factory=list)


@dataclass
class PlaceDetails:
    """Details of a scraped place."""

    id: str
    name: str
    user_rating_count: int = 0
    image_url: str | None = None
    primary_type: str | None = None
    lat: float | None = None
    lng: float | None = None


@dataclass
class ScrapedPlace:
    """A scraped place and its (category, field) pairs."""

    place: PlaceDetails
    fields: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class OnReviewsReadyParams:
    """Payload of ON_REVIEWS_READY.

    ``reviews`` yields batches of reviews; ``done`` is resolved once they are
    all stored, or fails with the error that stopped the insertion.
    """

    reviews: Iterable[Sequence[ScrapedReview]]
    done: Future = field(default_factory=Future)