"""Transactional outbox for calendar domain events."""

from homestay.platform.outbox.models import OutboxMessage
from homestay.platform.outbox.services import (
    EventBusAdapter,
    OutboxEvent,
    dequeue_batch,
    dispatch_ready,
    enqueue,
    mark_failed,
    mark_sent,
    retry_delay,
)

__all__ = [
    "EventBusAdapter",
    "OutboxEvent",
    "OutboxMessage",
    "dequeue_batch",
    "dispatch_ready",
    "enqueue",
    "mark_failed",
    "mark_sent",
    "retry_delay",
]
