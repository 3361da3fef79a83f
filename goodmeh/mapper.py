"""Conversion of stored rows into response bodies."""

from __future__ import annotations

from collections.abc import Sequence

from goodmeh.dto import PlacePreviewResponseDto, PlaceResponseDto, ReviewResponseDto
from goodmeh.models import Place, PlaceReviewRow


def to_place_preview_response_dtos(places: Sequence[Place]) -> list[PlacePreviewResponseDto]:
    """Short previews of places."""
    return [
        PlacePreviewResponseDto(
            id=place.id,
            name=place.name,
            rating=place.rating,
            user_rating_count=place.user_rating_count,
            last_scraped=place.last_scraped,
            image_url=place.image_url,
            primary_type=place.primary_type,
        )
        for place in places
    ]


def to_place_response_dto(place: Place) -> PlaceResponseDto:
    """Full description of a place."""
    return PlaceResponseDto(
        id=place.id,
        name=place.name,
        rating=place.rating,
        weighted_rating=place.weighted_rating,
        user_rating_count=place.user_rating_count,
        summary=place.summary,
        last_scraped=place.last_scraped,
        image_url=place.image_url,
        primary_type=place.primary_type,
        business_summary=place.business_summary,
        price_range=place.price_range,
        earliest_review_date=place.earliest_review_date,
        lat=place.lat,
        lng=place.lng,
    )


def to_review_response_dtos(
    rows: Sequence[PlaceReviewRow],
    image_urls: Sequence[list[str] | None],
    per_page: int,
) -> list[ReviewResponseDto]:
    """Pair each review row with its image URLs, at the same position."""
    if len(image_urls) < len(rows):
        raise ValueError("fewer image lists than reviews")
    return [
        ReviewResponseDto(
            review=row.review,
            user=row.user,
            reply=row.reply if row.reply is not None and row.reply.review_id else None,
            image_urls=urls,
        )
        for row, urls in zip(rows, image_urls)
    ]