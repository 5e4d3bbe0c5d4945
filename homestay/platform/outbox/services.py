"""Outbox staging and delivery to the in-process event bus."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Set

from homestay.core.events.event_bus import EventBus, event_bus
from homestay.extensions import db
from homestay.platform.outbox.models import OutboxMessage

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SENDING = "sending"
STATUS_SENT = "sent"
STATUS_RETRY = "retry"
STATUS_DEAD = "dead"

MAX_DISPATCH_ATTEMPTS = 5
DEFAULT_RETRY_IN = timedelta(minutes=1)
MAX_RETRY_IN = timedelta(hours=1)


@dataclass(frozen=True)
class OutboxEvent:
    """What subscribers receive for one outbox message."""

    event_type: str
    message_id: int
    child_id: Optional[str]
    created_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: OutboxMessage) -> "OutboxEvent":
        return cls(
            event_type=message.event_type,
            message_id=message.id,
            child_id=message.child_id,
            created_at=message.created_at,
            payload=dict(message.payload or {}),
        )


class EventBusAdapter:
    """Publishes outbox messages on an EventBus, at most once per adapter."""

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        self.bus = bus or event_bus
        self._published: Set[int] = set()

    def dispatch(self, message: OutboxMessage) -> None:
        if message.id in self._published:
            return
        self.bus.publish(OutboxEvent.from_message(message))
        self._published.add(message.id)


def retry_delay(attempts: int, base: timedelta = DEFAULT_RETRY_IN) -> timedelta:
    """Exponential backoff: base, 2x base, 4x base... capped at MAX_RETRY_IN."""
    return min(base * (2 ** max(attempts - 1, 0)), MAX_RETRY_IN)


def enqueue(
    event_name: str,
    payload: dict,
    child_id: Optional[str],
    available_at: Optional[datetime] = None,
) -> OutboxMessage:
    """Stage an event; it is written only if the caller's transaction commits."""
    message = OutboxMessage(
        event_type=event_name,
        child_id=child_id,
        payload=payload or {},
        status=STATUS_PENDING,
        attempts=0,
        available_at=available_at or datetime.utcnow(),
    )
    db.session.add(message)
    return message


def dequeue_batch(limit: int = 50) -> List[OutboxMessage]:
    """Claim up to `limit` ready messages, oldest first, and mark them sending."""
    claimed = (
        OutboxMessage.query.filter(
            OutboxMessage.status.in_((STATUS_PENDING, STATUS_RETRY)),
            OutboxMessage.available_at <= datetime.utcnow(),
        )
        .order_by(OutboxMessage.available_at, OutboxMessage.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for message in claimed:
        message.status = STATUS_SENDING
        message.attempts = (message.attempts or 0) + 1
    db.session.commit()
    return claimed


def mark_sent(ids: Sequence[int]) -> int:
    if not ids:
        return 0
    count = (
        OutboxMessage.query.filter(
            OutboxMessage.id.in_(list(ids)),
            OutboxMessage.status == STATUS_SENDING,
        )
        .update(
            {"status": STATUS_SENT, "last_error": None, "sent_at": datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.session.commit()
    return count


def mark_failed(message_id: int, err: Exception | str, retry_in: Optional[timedelta] = None) -> Optional[OutboxMessage]:
    """
    Record a failed delivery.

    The message is retried after `retry_in` (default: exponential backoff on
    its attempt count) until MAX_DISPATCH_ATTEMPTS, then marked dead.
    """
    message = (
        OutboxMessage.query.filter_by(id=message_id, status=STATUS_SENDING)
        .with_for_update()
        .one_or_none()
    )
    if message is None:
        return None

    message.last_error = str(err)
    if message.attempts >= MAX_DISPATCH_ATTEMPTS:
        message.status = STATUS_DEAD
        logger.error(f"Outbox message {message.id} ({message.event_type}) dead after {message.attempts} attempts: {err}")
    else:
        delay = retry_delay(message.attempts) if retry_in is None else retry_in
        message.status = STATUS_RETRY
        message.available_at = datetime.utcnow() + delay
    db.session.commit()
    return message


def dispatch_ready(
    limit: int = 50,
    retry_in: Optional[timedelta] = None,
    bus_adapter: Optional[EventBusAdapter] = None,
) -> List[int]:
    """Publish one batch of ready messages; returns the ids that were sent."""
    adapter = bus_adapter or EventBusAdapter()
    sent: List[int] = []
    for message in dequeue_batch(limit=limit):
        try:
            adapter.dispatch(message)
        except Exception as err:
            logger.warning(f"Outbox delivery failed for message {message.id}: {err}")
            mark_failed(message.id, err, retry_in=retry_in)
        else:
            sent.append(message.id)
    mark_sent(sent)
    return sent
