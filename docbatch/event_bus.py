"""
DOCBATCH Event Bus

Synchronous pub/sub for task lifecycle events. Each orchestrator gets
its bus injected; subscribers (the audit journal, the CLI) attach to it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class DocBatchEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    source: str
    payload: Dict[str, Any] = Field(default_factory=dict)


Subscriber = Callable[[DocBatchEvent], None]


class EventBus:
    """A lightweight, synchronous event bus for task lifecycle observability."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event_type: str, source: str, payload: Dict[str, Any]) -> DocBatchEvent:
        """Construct and broadcast a DocBatchEvent to all subscribers."""
        event = DocBatchEvent(event_type=event_type, source=source, payload=payload)

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                # A broken subscriber must not break the task lifecycle
                logger.warning(f"[EVENTS] Subscriber {getattr(subscriber, '__name__', subscriber)!r} failed on {event_type}: {e}")
        return event
