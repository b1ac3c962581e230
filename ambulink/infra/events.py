from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from ambulink.domain.models import EventEnvelope, EventRecord
from ambulink.infra.db import engine
from ambulink.infra.request_context import current_correlation_id, current_user_id

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventEnvelope], None]


class EventBus:
    """Fire-and-forget sink for domain events.

    Events are published after the producing transaction has committed. A
    failure to persist the record or inside a subscriber is logged and never
    reaches the caller.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def _store(self, event: EventEnvelope, session: Session | None) -> None:
        record = EventRecord(**event.model_dump())
        if session is not None:
            # The caller owns the transaction.
            session.add(record)
            return
        with Session(engine) as own_session:
            own_session.add(record)
            own_session.commit()

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        try:
            self._store(event, session)
        except Exception:
            logger.exception("failed to store event %s (%s)", event.event_id, event.event_type)

        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("event handler failed for %s (%s)", event.event_id, event.event_type)

    def publish_dict(
        self,
        event_type: str,
        organization_id: str,
        payload: dict[str, Any],
        actor_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            organization_id=organization_id,
            actor_id=actor_id if actor_id is not None else current_user_id(),
            correlation_id=current_correlation_id(),
            payload=payload,
        )
        self.publish(event)
        return event


event_bus = EventBus()
