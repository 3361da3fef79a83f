"""HTTP handlers for the health check and the places API."""

from __future__ import annotations

import re
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from goodmeh.dto import (
    GetPlaceImagesResponseDto,
    GetPlaceReviewsResponseDto,
    RequestPlaceResponseDto,
    to_jsonable,
)
from goodmeh.events import EventBus, EventType, PlaceDetails, assert_handler
from goodmeh.mapper import (
    to_place_preview_response_dtos,
    to_place_response_dto,
    to_review_response_dtos,
)
from goodmeh.socket import SocketServer

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class _BadRequest(ValueError):
    """A request parameter could not be used."""


def _atoi(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid integer: {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return value


def _pagination(request: Request) -> tuple[int, int]:
    try:
        page = _atoi(request.query_params.get("page", "0"))
    except ValueError:
        raise _BadRequest("Invalid page") from None
    try:
        per_page = _atoi(request.query_params.get("per_page", "20"))
    except ValueError:
        raise _BadRequest("Invalid per_page") from None
    return page, per_page


def _json(value: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(to_jsonable(value), status_code=status_code)


def _error(error: Exception, status_code: int) -> JSONResponse:
    return _json({"error": str(error)}, status_code)


class HealthController:
    """Answers health checks."""

    def __init__(self, field_service: Any) -> None:
        # Held so that the field service, which only listens to events, stays alive.
        self._field_service = field_service

    def health(self, request: Request) -> Response:
        return PlainTextResponse("OK")

    def routes(self) -> list[Route]:
        return [Route("/v1/health", self.health, methods=["GET"])]


class PlacesController:
    """Places, their reviews and images; pushes scraped places to websocket rooms."""

    def __init__(
        self,
        place_service: Any,
        review_service: Any,
        socket_server: SocketServer,
        event_bus: EventBus,
    ) -> None:
        self._place_service = place_service
        self._review_service = review_service
        self._socket_server = socket_server
        self._event_bus = event_bus
        event_bus.subscribe(
            EventType.ON_PLACE_SCRAPE, assert_handler(self.on_place_scrape, PlaceDetails)
        )

    def request_place(self, request: Request) -> Response:
        """Return a place, or report that it is being scraped."""
        place_id = request.path_params["id"]
        try:
            place = self._place_service.request_place(place_id)
        except Exception as error:
            return _error(error, 500)
        if place is None:
            return _json(RequestPlaceResponseDto(status="Scraping"))
        return _json(to_place_response_dto(place))

    def get_random_places(self, request: Request) -> Response:
        try:
            places = self._place_service.get_random_places()
        except Exception as error:
            return _error(error, 500)
        return _json(to_place_preview_response_dtos(places))

    def get_place_reviews(self, request: Request) -> Response:
        place_id = request.path_params["id"]
        try:
            page, per_page = _pagination(request)
        except _BadRequest as error:
            return _error(error, 400)
        try:
            rows = self._place_service.get_place_reviews(place_id, page, per_page)
            image_urls = self._review_service.get_reviews_images([row.review.id for row in rows])
        except Exception as error:
            return _error(error, 500)
        return _json(
            GetPlaceReviewsResponseDto(
                data=to_review_response_dtos(rows, image_urls, per_page),
                has_next=len(rows) == per_page,
            )
        )

    def get_place_images(self, request: Request) -> Response:
        place_id = request.path_params["id"]
        try:
            page, per_page = _pagination(request)
        except _BadRequest as error:
            return _error(error, 400)
        try:
            image_urls = self._place_service.get_place_images(place_id, page, per_page)
        except Exception as error:
            return _error(error, 500)
        return _json(
            GetPlaceImagesResponseDto(
                data=list(image_urls) if image_urls else None,
                has_next=len(image_urls) == per_page,
            )
        )

    def get_place_names(self, request: Request) -> Response:
        try:
            names = self._place_service.get_place_names()
        except Exception as error:
            return _error(error, 500)
        return _json(names)

    def on_place_scrape(self, place: PlaceDetails) -> None:
        """Push a freshly scraped place to the clients watching it."""
        self._socket_server.to(place.id, place)

    def routes(self) -> list[Route]:
        return [
            Route("/v1/places/", self.get_place_names, methods=["GET"]),
            Route("/v1/places/{id}", self.request_place, methods=["POST"]),
            Route("/v1/places/{id}/reviews", self.get_place_reviews, methods=["GET"]),
            Route("/v1/places/{id}/images", self.get_place_images, methods=["GET"]),
            Route("/v1/places/discover", self.get_random_places, methods=["GET"]),
        ]