"""Response bodies of the HTTP API and their JSON conversion."""

from __future__ import annotations

import base64
import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from goodmeh.models import Review, ReviewReply, User


def _format_datetime(value: datetime) -> str:
    text = value.replace(tzinfo=None).isoformat(timespec="seconds")
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if offset is None:
        return text
    if offset == timedelta(0):
        return text + "Z"
    total_minutes = int(offset.total_seconds()) // 60
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def to_jsonable(value: Any) -> Any:
    """Convert a value into plain JSON-compatible Python objects."""
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return _format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        to_dict = getattr(value, "to_dict", None)
        if callable(to_dict):
            return to_dict()
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    raise TypeError(f"cannot convert {type(value).__name__} to JSON")


@dataclass
class PlacePreviewResponseDto:
    id: str
    name: str
    rating: float
    user_rating_count: int
    last_scraped: datetime | None = None
    image_url: str | None = None
    primary_type: str | None = None


@dataclass
class ReviewResponseDto:
    """A review whose own fields appear at the top level of its JSON."""

    review: Review
    user: User
    reply: ReviewReply | None = None
    image_urls: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON form: the review's fields, then user, reply and image_urls."""
        return {
            **to_jsonable(self.review),
            "user": to_jsonable(self.user),
            "reply": to_jsonable(self.reply),
            "image_urls": to_jsonable(self.image_urls),
        }


@dataclass
class GetPlaceReviewsResponseDto:
    data: list[ReviewResponseDto]
    has_next: bool


@dataclass
class GetPlaceImagesResponseDto:
    data: list[str] | None
    has_next: bool


@dataclass
class RequestPlaceResponseDto:
    status: str
    failed: bool = False


@dataclass
class PlaceResponseDto:
    id: str
    name: str
    rating: float
    weighted_rating: float
    user_rating_count: int
    summary: str | None = None
    last_scraped: datetime | None = None
    image_url: str | None = None
    primary_type: str | None = None
    business_summary: str | None = None
    price_range: int | None = None
    earliest_review_date: datetime | None = None
    lat: float | None = None
    lng: float | None = None
    status: str | None = None