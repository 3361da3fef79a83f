"""Storing the fields (attributes) that places are tagged with."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from goodmeh.events import EventBus, EventType, assert_handler
from goodmeh.queries import Queries

logger = logging.getLogger(__name__)


class FieldService:
    """Inserts new (category, field) pairs, also on INSERT_NEW_FIELDS events."""

    def __init__(self, queries: Queries, event_bus: EventBus) -> None:
        self._queries = queries
        self._event_bus = event_bus
        event_bus.subscribe(EventType.INSERT_NEW_FIELDS, assert_handler(self.insert_fields, list))

    def insert_fields(self, fields: Sequence[tuple[str, str]]) -> None:
        """Insert each (category name, field name) pair; existing ones are kept.

        A category that is not known is stored as category id 0.
        """
        try:
            categories = {c.name: c.id for c in self._queries.get_field_categories()}
        except Exception as error:
            logger.error("Error getting field categories: %s", error)
            raise
        for category_name, field_name in fields:
            try:
                self._queries.insert_field(field_name, categories.get(category_name, 0))
            except Exception as error:
                logger.error("Error inserting field %s: %s", field_name, error)
                raise