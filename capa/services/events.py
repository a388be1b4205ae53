"""
Invalidation channel for cross-view consistency.

Views subscribe to entity events and re-run their own fetch-and-derive
cycle when one arrives. The channel is owned by the engine instance and
injected into services, so tests can inspect what was published.

Usage:
    channel = InvalidationChannel()
    channel.subscribe(ACTION_UPDATED, refresh_action_panel)
    await channel.publish(ACTION_UPDATED, entity_id="42", parent_id="F-1")
"""
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, DefaultDict, Dict, List, Optional

from capa.core.time import utc_now

logger = logging.getLogger(__name__)

FINDING_UPDATED = "finding_updated"
ROOT_CAUSE_UPDATED = "root_cause_updated"
ACTION_UPDATED = "action_updated"
ATTACHMENT_UPDATED = "attachment_updated"

EVENT_TYPES = (FINDING_UPDATED, ROOT_CAUSE_UPDATED, ACTION_UPDATED, ATTACHMENT_UPDATED)

# Subscribe to this to receive every event
ALL_EVENTS = "*"

Handler = Callable[["InvalidationEvent"], Any]


@dataclass
class InvalidationEvent:
    """Published after a mutation; carries the id of the entity to re-fetch."""
    event_type: str
    entity_id: str
    parent_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)


class InvalidationChannel:
    """Publish/subscribe channel for invalidation events."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self.published: List[InvalidationEvent] = []
        self._events_by_type: DefaultDict[str, int] = defaultdict(int)

    def subscribe(self, event_type: str, handler: Handler) -> None:
        """Register a sync or async handler for one event type (or ALL_EVENTS)."""
        self._check_type(event_type)
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> bool:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def _check_type(self, event_type: str) -> None:
        if event_type != ALL_EVENTS and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")

    def _record(self, event_type: str, entity_id, parent_id) -> InvalidationEvent:
        self._check_type(event_type)
        event = InvalidationEvent(
            event_type=event_type,
            entity_id=str(entity_id),
            parent_id=str(parent_id) if parent_id is not None else None,
        )
        self.published.append(event)
        self._events_by_type[event_type] += 1
        return event

    def _targets(self, event_type: str) -> List[Handler]:
        return list(self._handlers.get(event_type, [])) + list(self._handlers.get(ALL_EVENTS, []))

    async def publish(self, event_type: str, entity_id, parent_id=None) -> InvalidationEvent:
        """
        Publish an event and await every handler.

        A failing handler is logged and does not stop the others; one broken
        view must not keep the rest from refreshing.
        """
        event = self._record(event_type, entity_id, parent_id)
        for handler in self._targets(event_type):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Invalidation handler failed for %s %s", event_type, event.entity_id)
        return event

    def publish_sync(self, event_type: str, entity_id, parent_id=None) -> InvalidationEvent:
        """Publish from synchronous code; only sync handlers are called."""
        event = self._record(event_type, entity_id, parent_id)
        for handler in self._targets(event_type):
            if inspect.iscoroutinefunction(handler):
                logger.debug("Skipping async handler %r in publish_sync", handler)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Invalidation handler failed for %s %s", event_type, event.entity_id)
        return event

    def events_for(self, event_type: str) -> List[InvalidationEvent]:
        return [e for e in self.published if e.event_type == event_type]

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "total_events_published": len(self.published),
            "events_by_type": dict(self._events_by_type),
        }
