"""
Tests for lifecycle event publishing (grievance.services.events).

The publisher and sinks are exercised directly; SQS is replaced by an
in-memory fake client that records send_message() calls.
"""
import asyncio
import json
import uuid
from datetime import timedelta

import pytest

from conftest import T0
from grievance.schemas.event import LifecycleEventResponse
from grievance.services.events import (
    EventPublisher,
    EventType,
    RecordingEventSink,
    SqsEventSink,
    list_events,
    redeliver,
)


def _event(sequence: int = 1, complaint_id: uuid.UUID | None = None) -> LifecycleEventResponse:
    return LifecycleEventResponse(
        id=uuid.uuid4(),
        complaint_id=complaint_id or uuid.uuid4(),
        sequence=sequence,
        event_type=EventType.COMPLAINT_CREATED.value,
        actor_id=None,
        actor_role="citizen",
        actor_name=None,
        occurred_at=T0,
        payload={"status": "pending"},
    )


class FakeSqsClient:
    def __init__(self):
        self.sent: list[dict] = []

    def send_message(self, **kwargs):
        self.sent.append(kwargs)
        return {"MessageId": str(uuid.uuid4())}


class FailingSink:
    def __init__(self):
        self.attempts = 0

    async def deliver(self, event):
        self.attempts += 1
        raise ConnectionError("notification service unreachable")


class SlowSink(RecordingEventSink):
    def __init__(self, release: asyncio.Event):
        super().__init__()
        self.release = release

    async def deliver(self, event):
        await self.release.wait()
        await super().deliver(event)


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sqs_sink_uses_message_groups_on_fifo_queues():
    client = FakeSqsClient()
    sink = SqsEventSink("https://sqs.ap-south-1.amazonaws.com/123/lifecycle.fifo", client=client)
    event = _event()

    await sink.deliver(event)

    message = client.sent[0]
    assert message["MessageGroupId"] == str(event.complaint_id)
    assert message["MessageDeduplicationId"] == str(event.id)
    assert message["MessageAttributes"]["event_type"]["StringValue"] == "complaint_created"
    body = json.loads(message["MessageBody"])
    assert body["sequence"] == 1
    assert body["payload"] == {"status": "pending"}


@pytest.mark.asyncio
async def test_sqs_sink_standard_queue_has_no_group():
    client = FakeSqsClient()
    sink = SqsEventSink("https://sqs.ap-south-1.amazonaws.com/123/lifecycle", client=client)

    await sink.deliver(_event())

    assert "MessageGroupId" not in client.sent[0]
    assert "MessageDeduplicationId" not in client.sent[0]


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publisher_delivers_in_order():
    sink = RecordingEventSink()
    publisher = EventPublisher(sink)
    publisher.start()
    complaint_id = uuid.uuid4()

    for seq in range(1, 6):
        assert publisher.publish(_event(seq, complaint_id)) is True
    await publisher.stop(drain=True)

    assert [e.sequence for e in sink.events] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_delivery_failure_is_logged_not_raised(caplog):
    sink = FailingSink()
    publisher = EventPublisher(sink)
    publisher.start()

    publisher.publish(_event())
    await publisher.drain()
    await publisher.stop()

    assert sink.attempts == 1
    assert publisher.failed == 1
    assert "notification service unreachable" in caplog.text


@pytest.mark.asyncio
async def test_full_queue_drops_without_blocking():
    release = asyncio.Event()
    publisher = EventPublisher(SlowSink(release), maxsize=2)

    # Dispatcher not started: nothing drains the queue
    assert publisher.publish(_event(1)) is True
    assert publisher.publish(_event(2)) is True
    assert publisher.publish(_event(3)) is False
    assert publisher.dropped == 1
    assert publisher.backlog == 2

    publisher.start()
    release.set()
    await publisher.stop(drain=True)
    assert [e.sequence for e in publisher.sink.events] == [1, 2]


@pytest.mark.asyncio
async def test_stop_gives_up_on_a_hung_sink(caplog):
    hung = SlowSink(asyncio.Event())  # never released
    publisher = EventPublisher(hung)
    publisher.start()
    publisher.publish(_event(1))
    publisher.publish(_event(2))

    await asyncio.wait_for(publisher.stop(drain=True, timeout=0.05), timeout=5)

    assert hung.events == []
    assert "Event drain timed out" in caplog.text
    assert "1 queued events left in outbox" in caplog.text


@pytest.mark.asyncio
async def test_slow_sink_does_not_stall_mutations(
    db_session, clock, locks, create_complaint, admin, officer
):
    from grievance.services.complaints import ComplaintService

    release = asyncio.Event()
    slow = SlowSink(release)
    publisher = EventPublisher(slow)
    publisher.start()
    service = ComplaintService(db_session, publisher=publisher, clock=clock, locks=locks)

    complaint_id = await create_complaint()
    complaint = await asyncio.wait_for(service.assign(complaint_id, officer.id, admin), timeout=5)
    assert complaint.status == "in_progress"
    assert slow.events == []

    release.set()
    await publisher.stop(drain=True)
    assert [e.event_type for e in slow.events] == ["complaint_assigned"]


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_redeliver_replays_committed_events(
    db_session, complaint_service, assigned_complaint_id, create_complaint, admin, clock
):
    clock.advance(days=2)
    other_id = await create_complaint()

    sink = RecordingEventSink()
    replay = EventPublisher(sink)
    replay.start()

    queued = await redeliver(db_session, replay, since=T0 - timedelta(minutes=1))
    await replay.stop(drain=True)
    assert queued == 3
    by_complaint = [(e.complaint_id, e.sequence) for e in sink.events]
    assert by_complaint.index((assigned_complaint_id, 1)) < by_complaint.index((assigned_complaint_id, 2))

    sink.events.clear()
    replay.start()
    queued = await redeliver(db_session, replay, since=T0 + timedelta(days=1))
    await replay.stop(drain=True)
    assert queued == 1
    assert sink.events[0].complaint_id == other_id


@pytest.mark.asyncio
async def test_event_rows_carry_actor_and_payload(db_session, assigned_complaint_id, admin, officer):
    events = await list_events(db_session, assigned_complaint_id)
    assigned = events[-1]

    assert assigned.event_type == "complaint_assigned"
    assert assigned.actor_id == admin.id
    assert assigned.actor_role == "admin"
    assert assigned.payload["officer_id"] == str(officer.id)
    assert assigned.payload["old_status"] == "pending"
    assert assigned.payload["new_status"] == "in_progress"
    assert assigned.payload["deadline"] == (T0 + timedelta(days=7)).isoformat()
