"""Application assembly and the command that serves it."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.routing import Mount, WebSocketRoute

from goodmeh.controllers import HealthController, PlacesController
from goodmeh.db import Database, connect
from goodmeh.events import EventBus
from goodmeh.fields_service import FieldService
from goodmeh.places_service import CollectorFactory, PlaceService
from goodmeh.reviews_service import ReviewService
from goodmeh.socket import SocketServer

MAX_CONNECTIONS = 10
DEFAULT_PORT = 8080


def _no_collector(place_id: str):
    raise RuntimeError(f"no review collector is configured to scrape place {place_id}")


def create_app(database: Database, collector_factory: Optional[CollectorFactory] = None) -> Starlette:
    """Wire services, controllers and routes into a Starlette application.

    Without a collector factory, scrapes fail and their requests are marked failed.
    """
    queries_module_db = database
    from goodmeh.queries import Queries

    queries = Queries(queries_module_db)
    event_bus = EventBus()
    socket_server = SocketServer()
    field_service = FieldService(queries, event_bus)
    review_service = ReviewService(queries, event_bus)
    place_service = PlaceService(queries, event_bus, collector_factory or _no_collector)
    health = HealthController(field_service)
    places = PlacesController(place_service, review_service, socket_server, event_bus)

    app = Starlette(
        routes=[
            WebSocketRoute("/ws", socket_server.websocket_endpoint),
            Mount("/api", routes=[*health.routes(), *places.routes()]),
        ]
    )
    app.state.database = database
    app.state.event_bus = event_bus
    app.state.socket_server = socket_server
    return app


def main(argv: Optional[list[str]] = None) -> int:
    """Serve the API; settings come from arguments, the environment or ./.env."""
    load_dotenv(Path.cwd() / ".env")
    parser = argparse.ArgumentParser(prog="goodmeh", description="Serve the places and reviews API.")
    parser.add_argument("--port", type=int, default=None, help="port to listen on (env PORT)")
    parser.add_argument("--database-url", default=None, help="database URL (env DATABASE_URL)")
    args = parser.parse_args(argv)

    port = args.port
    if port is None:
        try:
            port = int(os.environ.get("PORT") or DEFAULT_PORT)
        except ValueError:
            parser.error("PORT must be an integer")
    database_url = args.database_url or os.environ.get("DATABASE_URL")
    if not database_url:
        parser.error("DATABASE_URL is not set")

    logging.basicConfig(level=logging.INFO)
    database = connect(database_url, max_connections=MAX_CONNECTIONS)
    try:
        uvicorn.run(create_app(database), host="0.0.0.0", port=port)
    finally:
        database.close()
    return 0