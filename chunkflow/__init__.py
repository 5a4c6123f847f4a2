"""Staged audio-chunk pipeline with backpressure, an in-memory store and an HTTP/WebSocket server."""

__version__ = "0.1.0"

__all__ = ["__version__"]