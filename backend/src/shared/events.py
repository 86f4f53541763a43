"""
Internal event bus.

Each committed domain transaction publishes immutable ``DomainEvent`` records
through ``txn.after_commit``. Subscribers are independent and at-least-once;
a failing subscriber is logged and never reaches the caller.
"""
import hashlib
from typing import Callable, Iterable, List, Optional

from .config import config
from .logging import logger
from .models import DomainEvent
from .sqs import build_client, send_message
from .utils import now_iso

Subscriber = Callable[[DomainEvent], None]


def make_event(event_type: str, target_user_id: str, title: str, body: str,
               version: Optional[str] = None, **correlation) -> DomainEvent:
    """
    Build an event whose id is derived from its content, so the same logical
    event produced twice (retry, stream redelivery) carries the same id.
    """
    correlation_ids = {k: str(v) for k, v in correlation.items() if v is not None}
    seed = '|'.join([event_type, target_user_id, version or ''] +
                    [f'{k}={correlation_ids[k]}' for k in sorted(correlation_ids)])
    return DomainEvent(
        event_id=hashlib.sha256(seed.encode('utf-8')).hexdigest()[:32],
        type=event_type,
        target_user_id=target_user_id,
        title=title,
        body=body,
        correlation_ids=correlation_ids,
        created_at=now_iso(),
    )


class EventBus:
    """Fan-out of domain events to subscribers."""

    def __init__(self, subscribers: Optional[Iterable[Subscriber]] = None):
        self.subscribers: List[Subscriber] = list(subscribers or [])

    def subscribe(self, subscriber: Subscriber) -> None:
        self.subscribers.append(subscriber)

    def publish(self, event: DomainEvent) -> None:
        for subscriber in self.subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Event subscriber failed for {event.type} -> {event.target_user_id}: {e}")

    def publish_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self.publish(event)


class SqsEventSink:
    """
    Hands events to the notification dispatcher's queue.

    On a FIFO queue the event id doubles as the deduplication id, so the same
    event arriving from the callable path and the stream trigger is delivered once.
    """

    def __init__(self, queue_url: str, client=None):
        self.queue_url = queue_url
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = build_client()
        return self._client

    def __call__(self, event: DomainEvent) -> None:
        if not self.queue_url:
            logger.info(f"No notification queue configured, dropping {event.type}")
            return

        body = event.to_item()
        if self.queue_url.endswith('.fifo'):
            try:
                self.client.send_message(
                    QueueUrl=self.queue_url,
                    MessageBody=event.model_dump_json(by_alias=True, exclude_none=True),
                    MessageGroupId=event.target_user_id,
                    MessageDeduplicationId=event.event_id,
                )
            except Exception as e:
                logger.error(f"Error sending event {event.event_id} to SQS: {e}")
            return

        send_message(self.client, self.queue_url, body)


def default_bus(cfg=config) -> EventBus:
    return EventBus([SqsEventSink(cfg.NOTIFICATION_QUEUE_URL)])
