from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog
from sqlmodel import Session

from phone_assets.domain.models import EventEnvelope, EventRecord
from phone_assets.infra.context import get_actor_id, get_request_id
from phone_assets.infra.db import engine

EventHandler = Callable[[EventEnvelope], None]

logger = structlog.get_logger(__name__)


class DomainEvent(StrEnum):
    TRANSFER_INITIATED = "TransferInitiated"
    TRANSFER_ACCEPTED = "TransferAccepted"
    TRANSFER_REJECTED = "TransferRejected"
    TASK_CREATED = "TaskCreated"
    TASK_ITEM_UPDATED = "TaskItemUpdated"
    TASK_SUBMITTED = "TaskSubmitted"
    TASK_CLOSED = "TaskClosed"
    UNLISTED_PHONE_REPORTED = "UnlistedPhoneReported"
    ASSET_RISK_FLAGGED = "AssetRiskFlagged"
    ASSET_REGISTERED = "AssetRegistered"
    ASSET_ASSIGNED = "AssetAssigned"
    ASSET_RECOVERED = "AssetRecovered"
    ASSET_STATUS_CHANGED = "AssetStatusChanged"
    ASSET_DELETED = "AssetDeleted"


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        should_commit = session is None
        if session is None:
            session = Session(engine)
        try:
            record = EventRecord(
                event_id=event.event_id,
                event_type=event.event_type,
                ts=event.ts,
                actor_id=event.actor_id,
                correlation_id=event.correlation_id,
                payload=event.payload,
            )
            session.add(record)
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()

        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # Subscribers are fire-and-forget; the command already committed.
                logger.exception("event.handler_failed", event_type=event.event_type, event_id=event.event_id)

    def publish_dict(self, event_type: str, payload: dict[str, Any]) -> EventEnvelope:
        event = EventEnvelope(
            event_type=str(event_type),
            actor_id=get_actor_id(),
            correlation_id=get_request_id(),
            payload=payload,
        )
        self.publish(event)
        return event


event_bus = EventBus()
