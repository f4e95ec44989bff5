"""
Event publication for Clarity.

Publishes trace and span lifecycle events to downstream consumers.
"""

from .publisher import Event, EventPublisher, LoggingEventPublisher

__all__ = ["Event", "EventPublisher", "LoggingEventPublisher"]
