"""Websocket rooms: clients join rooms by id and receive what is sent to them."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from starlette.websockets import WebSocket

from goodmeh.dto import to_jsonable

logger = logging.getLogger(__name__)

JOIN = "join"
LEAVE = "leave"


@dataclass
class Event:
    """A named message received from a client session."""

    name: str
    data: Any
    socket: Any


EventHandler = Callable[[Event], Any]


class _WebSocketSession:
    """A connected client; ``send`` may be called from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
        self._loop = loop
        self._queue = queue

    def send(self, text: str) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, text)
        except RuntimeError:
            logger.debug("dropping message for a closed session")


def _remove_first(sessions: list[Any], session: Any) -> None:
    for index, member in enumerate(sessions):
        if member is session:
            del sessions[index]
            return


class SocketServer:
    """Dispatches client messages to handlers and broadcasts to rooms.

    A session is any object with a ``send(text)`` method. Clients send
    ``{"name": ..., "data": ...}``; ``join`` and ``leave`` take a room id.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, list[Any]] = {}
        self._lock = threading.RLock()
        self._handlers: dict[str, EventHandler] = {}
        self.on(JOIN, self.add_to_room)
        self.on(LEAVE, self.remove_from_room)

    def on(self, event: str, handler: EventHandler) -> None:
        """Register the handler for messages with the given name."""
        self._handlers[event] = handler

    @staticmethod
    def _room_id(event: Event) -> str:
        if not isinstance(event.data, str):
            raise TypeError("room id must be a string")
        return event.data

    def add_to_room(self, event: Event) -> None:
        """Add the event's session to the room named by its data."""
        room_id = self._room_id(event)
        with self._lock:
            self._rooms.setdefault(room_id, []).append(event.socket)

    def remove_from_room(self, event: Event) -> None:
        """Remove the event's session from the room named by its data."""
        room_id = self._room_id(event)
        with self._lock:
            sessions = self._rooms.get(room_id)
            if sessions is not None:
                _remove_first(sessions, event.socket)

    def handle_message(self, session: Any, message: str | bytes) -> None:
        """Decode a client message and run its handler; malformed ones are ignored."""
        try:
            payload = json.loads(message)
        except (ValueError, TypeError):
            return
        if not isinstance(payload, dict):
            return
        name = payload.get("name")
        if name is None:
            name = ""
        elif not isinstance(name, str):
            return
        handler = self._handlers.get(name)
        if handler is not None:
            handler(Event(name=name, data=payload.get("data"), socket=session))

    def handle_disconnect(self, session: Any) -> None:
        """Remove a session from every room it is in."""
        with self._lock:
            for sessions in self._rooms.values():
                _remove_first(sessions, session)

    def to(self, room_id: str, data: Any) -> None:
        """Send ``data`` as JSON to every session in the room."""
        text = json.dumps(to_jsonable(data), separators=(",", ":"), ensure_ascii=False)
        with self._lock:
            sessions = list(self._rooms.get(room_id, ()))
        for session in sessions:
            session.send(text)

    @staticmethod
    async def _write(websocket: WebSocket, queue: asyncio.Queue) -> None:
        while True:
            text = await queue.get()
            await websocket.send_text(text)

    async def websocket_endpoint(self, websocket: WebSocket) -> None:
        """Serve one websocket connection until the client goes away."""
        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue()
        session = _WebSocketSession(asyncio.get_running_loop(), queue)
        writer = asyncio.create_task(self._write(websocket, queue))
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    continue
                try:
                    self.handle_message(session, text)
                except Exception:
                    logger.exception("websocket message handler failed")
        finally:
            self.handle_disconnect(session)
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)