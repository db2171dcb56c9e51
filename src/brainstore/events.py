"""Synchronous in-process event bus.

Downstream collaborators (cache invalidation, audit logging) subscribe to
lifecycle events by name. Delivery contract:

- listeners run synchronously, in registration order
- exact-name listeners run before wildcard listeners ("brain.*")
- a listener that raises is logged and skipped; it never reaches the
  store's own transaction, which has already been persisted when events
  are emitted
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, Field

from .models import generate_id, utc_now

logger = logging.getLogger(__name__)

Listener = Callable[["BrainEvent"], None]


class BrainEvent(BaseModel):
    """An emitted lifecycle event."""

    id: str = Field(default_factory=generate_id)
    ts: datetime = Field(default_factory=utc_now)
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class Subscription:
    """Handle returned by `EventBus.subscribe`; pass it to `unsubscribe`."""

    pattern: str
    listener: Listener = field(compare=False)
    id: str = field(default_factory=generate_id)

    @property
    def is_wildcard(self) -> bool:
        return self.pattern.endswith("*")

    def matches(self, name: str) -> bool:
        if not self.is_wildcard:
            return self.pattern == name
        prefix = self.pattern[:-1]
        return prefix != "" and name.startswith(prefix)


class EventBus:
    """Registry of subscriber handles per event name."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self.failures: int = 0

    @staticmethod
    def normalize(name: str) -> str:
        return name.strip().lower()

    def subscribe(self, pattern: str, listener: Listener) -> Subscription:
        """Register listener for an event name or a trailing-`*` wildcard."""
        sub = Subscription(pattern=self.normalize(pattern), listener=listener)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> bool:
        before = len(self._subscriptions)
        self._subscriptions = [s for s in self._subscriptions if s.id != subscription.id]
        return len(self._subscriptions) != before

    def emit(self, name: str, payload: dict[str, Any] | None = None) -> BrainEvent:
        """Deliver an event to every matching listener; returns the event."""
        event = BrainEvent(name=self.normalize(name), payload=dict(payload or {}))

        exact = [s for s in self._subscriptions if not s.is_wildcard and s.matches(event.name)]
        wildcard = [s for s in self._subscriptions if s.is_wildcard and s.matches(event.name)]

        for sub in exact + wildcard:
            try:
                sub.listener(event)
            except Exception:
                self.failures += 1
                logger.exception(f"Listener {sub.id} for '{sub.pattern}' failed on {event.name}")

        return event

    def listener_count(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for sub in self._subscriptions:
            counts[sub.pattern] = counts.get(sub.pattern, 0) + 1
        return counts
