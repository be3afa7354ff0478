"""Event ingestion from the Chaturbate Events API."""

from .events_listener import EventsListener

__all__ = ["EventsListener"]
