"""Rows stored in the database and the request status codes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum


class RequestStatus(IntEnum):
    """Stage of a place request."""

    SCRAPING = 0
    SUMMARISING = 1
    ANALYSING = 2
    SUMMARISING_INDIVIDUAL_REVIEWS = 3


@dataclass
class Field:
    id: int
    name: str
    category_id: int


@dataclass
class FieldCategory:
    id: int
    name: str


@dataclass
class Place:
    id: str
    name: str
    rating: float = 0.0
    weighted_rating: float = 0.0
    user_rating_count: int = 0
    summary: str | None = None
    last_scraped: datetime | None = None
    image_url: str | None = None
    recompute_stats: bool = False
    primary_type: str | None = None
    business_summary: str | None = None
    price_range: int | None = None
    earliest_review_date: datetime | None = None
    lat: float | None = None
    lng: float | None = None


@dataclass
class PlaceField:
    place_id: str
    field_id: int


@dataclass
class PlaceKeyword:
    place_id: str
    keyword: str
    count: int = 0


@dataclass
class Request:
    place_id: str
    created_at: datetime
    status: int
    failed: bool = False
    batch_job_id: str | None = None


@dataclass
class Review:
    id: str
    user_id: str
    rating: int
    text: str
    created_at: datetime
    weight: int = 0
    place_id: str = ""
    price_range: int | None = None
    summary: str | None = None
    business_summary: str | None = None


@dataclass
class ReviewImage:
    review_id: str
    image_url: str


@dataclass
class ReviewReply:
    review_id: str
    text: str
    created_at: datetime


@dataclass
class User:
    id: str
    name: str
    photo_uri: str | None = None
    review_count: int = 0
    photo_count: int = 0
    rating_count: int = 0
    is_local_guide: bool = False
    long_review_count: int = 0
    score: int | None = None


@dataclass
class PlaceName:
    """Identifier and name of a place."""

    id: str
    name: str


@dataclass
class ReviewImageUrls:
    """All image URLs attached to one review."""

    review_id: str
    image_urls: list[str] = field(default_factory=list)


@dataclass
class PlaceReviewRow:
    """A review joined with its author and, when present, its reply."""

    review: Review
    user: User
    reply: ReviewReply | None = None