"""
Lifecycle event emitter and outbound publisher.

Every committed mutation produces exactly one LifecycleEvent row, written in
the same transaction as the mutation.  Once the transaction commits, the
emitter hands the event to the EventPublisher, which delivers it to the
notification collaborator in the background:

    mutation ──record()──▶ lifecycle_events row   (same transaction)
             ──commit──▶ flush() ──put_nowait──▶ asyncio.Queue ──▶ sink.deliver()

Delivery is at-least-once and best-effort: a slow or failing sink never stalls
or rolls back a mutation.  Per-complaint order is carried by the event
sequence number; SqsEventSink maps it onto FIFO message groups.
"""
import asyncio
import enum
import logging
import uuid
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grievance.core.clock import Clock, system_clock
from grievance.core.config import get_settings
from grievance.core.rbac import Actor
from grievance.models.complaint import Complaint
from grievance.models.event import LifecycleEvent
from grievance.schemas.event import LifecycleEventResponse

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    COMPLAINT_CREATED = "complaint_created"
    COMPLAINT_ASSIGNED = "complaint_assigned"
    COMPLAINT_REASSIGNED = "complaint_reassigned"
    COMPLAINT_STATUS_CHANGED = "complaint_status_changed"
    COMPLAINT_PRIORITY_CHANGED = "complaint_priority_changed"
    COMPLAINT_CLOSED = "complaint_closed"
    EXTENSION_REQUESTED = "extension_requested"
    EXTENSION_DECIDED = "extension_decided"
    NOTE_ADDED = "note_added"
    ATTACHMENT_ADDED = "attachment_added"


# ---------------------------------------------------------------------------
# Sinks: the notification collaborator boundary
# ---------------------------------------------------------------------------

class EventSink(Protocol):
    async def deliver(self, event: LifecycleEventResponse) -> None: ...


class LoggingEventSink:
    """Default sink when no queue is configured (local dev)."""

    async def deliver(self, event: LifecycleEventResponse) -> None:
        logger.info(
            "Lifecycle event %s #%d for complaint %s",
            event.event_type,
            event.sequence,
            event.complaint_id,
        )


class SqsEventSink:
    """Publishes events to SQS; FIFO queues get one message group per complaint."""

    def __init__(self, queue_url: str, client: Any = None, region: str | None = None):
        if client is None:
            import boto3

            client = boto3.client("sqs", region_name=region)
        self.queue_url = queue_url
        self.fifo = queue_url.endswith(".fifo")
        self._client = client

    def _message(self, event: LifecycleEventResponse) -> dict[str, Any]:
        message: dict[str, Any] = {
            "QueueUrl": self.queue_url,
            "MessageBody": event.model_dump_json(),
            "MessageAttributes": {
                "event_type": {"DataType": "String", "StringValue": event.event_type},
            },
        }
        if self.fifo:
            message["MessageGroupId"] = str(event.complaint_id)
            message["MessageDeduplicationId"] = str(event.id)
        return message

    async def deliver(self, event: LifecycleEventResponse) -> None:
        await asyncio.to_thread(self._client.send_message, **self._message(event))


class RecordingEventSink:
    """Keeps delivered events in memory (tests and local tooling)."""

    def __init__(self) -> None:
        self.events: list[LifecycleEventResponse] = []

    async def deliver(self, event: LifecycleEventResponse) -> None:
        self.events.append(event)


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

class EventPublisher:
    def __init__(self, sink: EventSink, maxsize: int = 1000):
        self.sink = sink
        self._queue: asyncio.Queue[LifecycleEventResponse] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task | None = None
        self.dropped = 0
        self.failed = 0

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    def publish(self, event: LifecycleEventResponse) -> bool:
        """Hand off without blocking. Returns False if the buffer is full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Event queue full; %s #%d for complaint %s left in outbox for redelivery",
                event.event_type,
                event.sequence,
                event.complaint_id,
            )
            return False
        logger.debug("Queued %s #%d for complaint %s", event.event_type, event.sequence, event.complaint_id)
        return True

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._dispatch(), name="event-publisher")

    async def drain(self, timeout: float | None = None) -> bool:
        """
        Wait until every queued event has been handed to the sink.

        Returns False if *timeout* seconds pass first; whatever is left stays
        in the outbox for redelivery.
        """
        if self._task is None or self._task.done():
            return self._queue.empty()
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Event drain timed out after %ss; %d queued events left in outbox for redelivery",
                timeout,
                self.backlog,
            )
            return False
        return True

    async def stop(self, drain: bool = True, timeout: float | None = None) -> None:
        if drain:
            await self.drain(timeout)
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _dispatch(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.sink.deliver(event)
            except Exception as exc:
                self.failed += 1
                logger.error(
                    "Delivery of %s #%d for complaint %s failed: %s",
                    event.event_type,
                    event.sequence,
                    event.complaint_id,
                    exc,
                )
            finally:
                self._queue.task_done()


def build_event_sink() -> EventSink:
    settings = get_settings()
    if settings.sqs_notification_queue_url:
        return SqsEventSink(settings.sqs_notification_queue_url, region=settings.aws_region)
    return LoggingEventSink()


_publisher: EventPublisher | None = None


def get_publisher() -> EventPublisher:
    """Process-wide publisher; FastAPI dependency (overridden in tests)."""
    global _publisher
    if _publisher is None:
        _publisher = EventPublisher(build_event_sink(), maxsize=get_settings().event_queue_maxsize)
    return _publisher


# ---------------------------------------------------------------------------
# Emitter
# ---------------------------------------------------------------------------

class EventEmitter:
    """
    Records events inside the caller's transaction and publishes them only
    after the caller commits.  Call flush() after commit, discard() after
    rollback.
    """

    def __init__(self, db: AsyncSession, publisher: EventPublisher, clock: Clock = system_clock):
        self.db = db
        self.publisher = publisher
        self.clock = clock
        self._pending: list[LifecycleEvent] = []

    def record(
        self,
        complaint: Complaint,
        event_type: EventType,
        actor: Actor,
        payload: dict[str, Any] | None = None,
    ) -> LifecycleEvent:
        now = self.clock.now()
        # Timestamps for one complaint never go backwards
        if complaint.updated_at is not None and now < complaint.updated_at:
            now = complaint.updated_at
        complaint.event_seq = (complaint.event_seq or 0) + 1
        complaint.updated_at = now

        event = LifecycleEvent(
            id=uuid.uuid4(),
            complaint_id=complaint.id,
            sequence=complaint.event_seq,
            event_type=EventType(event_type).value,
            actor_id=actor.id,
            actor_role=actor.role,
            actor_name=actor.name,
            occurred_at=now,
            payload=_jsonable(payload or {}),
        )
        self.db.add(event)
        self._pending.append(event)
        return event

    def flush(self) -> None:
        pending, self._pending = self._pending, []
        for event in pending:
            self.publisher.publish(LifecycleEventResponse.model_validate(event))

    def discard(self) -> None:
        self._pending.clear()


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


async def list_events(db: AsyncSession, complaint_id: uuid.UUID) -> list[LifecycleEvent]:
    result = await db.execute(
        select(LifecycleEvent)
        .where(LifecycleEvent.complaint_id == complaint_id)
        .order_by(LifecycleEvent.sequence)
    )
    return list(result.scalars().all())


async def redeliver(
    db: AsyncSession,
    publisher: EventPublisher,
    since: datetime,
    complaint_id: uuid.UUID | None = None,
) -> int:
    """Replay committed events from the outbox (at-least-once recovery)."""
    query = select(LifecycleEvent).where(LifecycleEvent.occurred_at >= since)
    if complaint_id is not None:
        query = query.where(LifecycleEvent.complaint_id == complaint_id)
    result = await db.execute(
        query.order_by(LifecycleEvent.complaint_id, LifecycleEvent.sequence)
    )
    count = 0
    for event in result.scalars().all():
        if publisher.publish(LifecycleEventResponse.model_validate(event)):
            count += 1
    logger.info("Re-queued %d lifecycle events since %s", count, since.isoformat())
    return count
