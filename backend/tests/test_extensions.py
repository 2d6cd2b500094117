"""
Tests for the extension arbiter (grievance.services.extensions).
"""
import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import text

from conftest import T0
from grievance.core.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from grievance.models.extension import ExtensionRequest
from grievance.services.events import list_events


@pytest.mark.asyncio
async def test_approve_extension_grows_time_boundary(
    arbiter, complaint_service, assigned_complaint_id, officer, admin, clock, publisher, sink
):
    request = await arbiter.request(assigned_complaint_id, 5, "Awaiting pump spare parts", officer)
    assert request.status == "pending"
    assert request.requested_by == officer.id
    assert request.requested_by_role == "officer"

    clock.advance(days=1)
    decided = await arbiter.decide(request.id, "approved", admin, notes="Parts on order")
    await publisher.drain()

    assert decided.status == "approved"
    assert decided.decided_by == admin.id
    assert decided.decided_at == T0 + timedelta(days=1)
    assert decided.notes == "Parts on order"

    complaint = await complaint_service.get(assigned_complaint_id)
    assert complaint.time_boundary == 12
    assert complaint.is_extended is True
    assert complaint.deadline == complaint.assigned_time + timedelta(days=12)

    event = sink.events[-1]
    assert event.event_type == "extension_decided"
    assert event.payload["outcome"] == "approved"
    assert event.payload["old_time_boundary"] == 7
    assert event.payload["new_time_boundary"] == 12
    assert event.payload["request_id"] == str(request.id)


@pytest.mark.asyncio
async def test_reject_extension_leaves_time_boundary(
    arbiter, complaint_service, assigned_complaint_id, officer, admin
):
    request = await arbiter.request(assigned_complaint_id, 5, None, officer)
    decided = await arbiter.decide(request.id, "rejected", admin)

    assert decided.status == "rejected"
    complaint = await complaint_service.get(assigned_complaint_id)
    assert complaint.time_boundary == 7
    assert complaint.is_extended is False


@pytest.mark.asyncio
async def test_second_pending_request_conflicts(arbiter, assigned_complaint_id, officer, admin):
    await arbiter.request(assigned_complaint_id, 5, None, officer)
    with pytest.raises(Conflict):
        await arbiter.request(assigned_complaint_id, 3, None, admin)

    requests = await arbiter.list_for_complaint(assigned_complaint_id)
    assert [r.status for r in requests] == ["pending"]


@pytest.mark.asyncio
async def test_new_request_allowed_after_decision(arbiter, complaint_service, assigned_complaint_id, officer, admin):
    first = await arbiter.request(assigned_complaint_id, 5, None, officer)
    await arbiter.decide(first.id, "approved", admin)
    second = await arbiter.request(assigned_complaint_id, 3, None, officer)
    await arbiter.decide(second.id, "approved", admin)

    complaint = await complaint_service.get(assigned_complaint_id)
    assert complaint.time_boundary == 15


@pytest.mark.asyncio
async def test_concurrent_requests_yield_exactly_one_success(arbiter, assigned_complaint_id, officer, admin):
    results = await asyncio.gather(
        arbiter.request(assigned_complaint_id, 5, None, officer),
        arbiter.request(assigned_complaint_id, 2, None, admin),
        return_exceptions=True,
    )

    assert len([r for r in results if isinstance(r, ExtensionRequest)]) == 1
    assert len([r for r in results if isinstance(r, Conflict)]) == 1
    requests = await arbiter.list_for_complaint(assigned_complaint_id)
    assert len(requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("days", [0, -1, 31, 2.5, "5", True, None])
async def test_days_must_be_positive_integer_within_cap(arbiter, assigned_complaint_id, officer, days):
    with pytest.raises(ValidationError):
        await arbiter.request(assigned_complaint_id, days, None, officer)


@pytest.mark.asyncio
async def test_request_at_cap_is_accepted(arbiter, assigned_complaint_id, officer):
    request = await arbiter.request(assigned_complaint_id, 30, None, officer)
    assert request.days_requested == 30


@pytest.mark.asyncio
async def test_request_on_closed_complaint_is_invalid_state(
    arbiter, complaint_service, assigned_complaint_id, officer, admin
):
    await complaint_service.set_status(assigned_complaint_id, "resolved", officer)
    await complaint_service.close(assigned_complaint_id, {"remarks": "done"}, officer)
    with pytest.raises(InvalidState):
        await arbiter.request(assigned_complaint_id, 5, None, admin)


@pytest.mark.asyncio
async def test_request_on_unassigned_complaint_is_invalid_state(arbiter, create_complaint, admin):
    complaint_id = await create_complaint()
    with pytest.raises(InvalidState):
        await arbiter.request(complaint_id, 5, None, admin)


@pytest.mark.asyncio
async def test_request_roles(arbiter, assigned_complaint_id, other_officer, citizen):
    with pytest.raises(Forbidden):
        await arbiter.request(assigned_complaint_id, 5, None, citizen)
    # Only the officer the complaint is assigned to
    with pytest.raises(Forbidden):
        await arbiter.request(assigned_complaint_id, 5, None, other_officer)


@pytest.mark.asyncio
async def test_only_admin_decides(arbiter, assigned_complaint_id, officer, citizen):
    request = await arbiter.request(assigned_complaint_id, 5, None, officer)
    request_id = request.id
    with pytest.raises(Forbidden):
        await arbiter.decide(request_id, "approved", officer)
    with pytest.raises(Forbidden):
        await arbiter.decide(request_id, "approved", citizen)
    assert (await arbiter.get(request_id)).status == "pending"


@pytest.mark.asyncio
async def test_decision_is_terminal(arbiter, complaint_service, assigned_complaint_id, officer, admin):
    request = await arbiter.request(assigned_complaint_id, 5, None, officer)
    request_id = request.id
    await arbiter.decide(request_id, "rejected", admin)

    with pytest.raises(InvalidTransition):
        await arbiter.decide(request_id, "approved", admin)
    assert (await arbiter.get(request_id)).status == "rejected"
    assert (await complaint_service.get(assigned_complaint_id)).time_boundary == 7


@pytest.mark.asyncio
async def test_decide_validates_outcome_and_request(arbiter, admin):
    with pytest.raises(ValidationError):
        await arbiter.decide(uuid.uuid4(), "maybe", admin)
    with pytest.raises(NotFound):
        await arbiter.decide(uuid.uuid4(), "approved", admin)


@pytest.mark.asyncio
async def test_failed_approval_rolls_back_decision(
    arbiter, complaint_service, assigned_complaint_id, officer, admin, db_session, publisher, sink
):
    request = await arbiter.request(assigned_complaint_id, 5, None, officer)
    request_id = request.id
    await complaint_service.set_status(assigned_complaint_id, "resolved", officer)
    await complaint_service.close(assigned_complaint_id, {"remarks": "done"}, officer)
    await publisher.drain()
    delivered = len(sink.events)

    with pytest.raises(InvalidState):
        await arbiter.decide(request_id, "approved", admin)

    await publisher.drain()
    assert len(sink.events) == delivered
    assert (await arbiter.get(request_id)).status == "pending"
    complaint = await complaint_service.get(assigned_complaint_id)
    assert complaint.time_boundary == 7
    events = await list_events(db_session, assigned_complaint_id)
    assert events[-1].event_type == "complaint_closed"


@pytest.mark.asyncio
async def test_pending_request_on_closed_complaint_can_be_rejected(
    arbiter, complaint_service, assigned_complaint_id, officer, admin, db_session
):
    request = await arbiter.request(assigned_complaint_id, 5, None, officer)
    request_id = request.id
    await complaint_service.set_status(assigned_complaint_id, "resolved", officer)
    await complaint_service.close(assigned_complaint_id, {"remarks": "done"}, officer)

    decided = await arbiter.decide(request_id, "rejected", admin, notes="Complaint already closed")

    assert decided.status == "rejected"
    assert decided.decided_by == admin.id
    complaint = await complaint_service.get(assigned_complaint_id)
    assert complaint.is_complaint_closed is True
    assert complaint.time_boundary == 7
    events = await list_events(db_session, assigned_complaint_id)
    assert events[-1].event_type == "extension_decided"
    assert events[-1].payload["outcome"] == "rejected"
    assert events[-1].payload["new_time_boundary"] == 7


@pytest.mark.asyncio
async def test_only_oldest_pending_request_is_decidable(
    arbiter, complaint_service, assigned_complaint_id, admin, clock, db_session, caplog
):
    # Reproduce corrupted data: two pending rows for one complaint
    await db_session.execute(text("DROP INDEX uq_extension_requests_one_pending"))
    older = ExtensionRequest(
        id=uuid.uuid4(),
        complaint_id=assigned_complaint_id,
        requested_by=admin.id,
        requested_by_role="admin",
        days_requested=2,
        status="pending",
        created_at=T0,
        updated_at=T0,
    )
    newer = ExtensionRequest(
        id=uuid.uuid4(),
        complaint_id=assigned_complaint_id,
        requested_by=admin.id,
        requested_by_role="admin",
        days_requested=4,
        status="pending",
        created_at=T0 + timedelta(hours=1),
        updated_at=T0 + timedelta(hours=1),
    )
    db_session.add_all([older, newer])
    await db_session.commit()
    older_id, newer_id = older.id, newer.id

    with caplog.at_level("ERROR", logger="grievance.services.extensions"):
        with pytest.raises(Conflict):
            await arbiter.decide(newer_id, "approved", admin)
    assert "Integrity violation" in caplog.text

    decided = await arbiter.decide(older_id, "approved", admin)
    assert decided.status == "approved"
    assert (await complaint_service.get(assigned_complaint_id)).time_boundary == 9
    assert (await arbiter.get(newer_id)).status == "pending"
