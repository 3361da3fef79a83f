"""Places and reviews backend: HTTP API, WebSocket rooms and batched review storage."""

__version__ = "0.1.0"