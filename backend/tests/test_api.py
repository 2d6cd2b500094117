"""
HTTP tests for the lifecycle endpoints.

Uses the client fixture from conftest.py (DEV_SKIP_AUTH=true, admin by
default).  Switch users with the X-Dev-User-ID header.  Failed requests roll
the shared session back, so cognito ids are read before the first call.
"""
import uuid

import pytest

from conftest import complaint_payload


def _as(user) -> dict:
    return {"X-Dev-User-ID": user.cognito_user_id}


@pytest.mark.asyncio
async def test_complaint_lifecycle_over_http(client, officer_user, citizen_user):
    officer_h, citizen_h = _as(officer_user), _as(citizen_user)
    officer_id = str(officer_user.id)

    resp = await client.post("/api/v1/complaints", json=complaint_payload(), headers=citizen_h)
    assert resp.status_code == 201
    created = resp.json()
    assert created["complaint_code"] == "04032024MLA001"
    assert created["status"] == "pending"
    assert created["deadline"] is None
    complaint_id = created["id"]

    resp = await client.post(
        f"/api/v1/complaints/{complaint_id}/assign", json={"officer_id": officer_id}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_progress"
    assert resp.json()["deadline"] == "2024-03-11T09:00:00"

    resp = await client.post(
        f"/api/v1/complaints/{complaint_id}/extensions",
        json={"days_requested": 5, "reason": "Contractor unavailable"},
        headers=officer_h,
    )
    assert resp.status_code == 201
    request_id = resp.json()["id"]

    resp = await client.post(
        f"/api/v1/extensions/{request_id}/decision", json={"outcome": "approved"}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"

    resp = await client.get(f"/api/v1/complaints/{created['complaint_code']}", headers=citizen_h)
    assert resp.status_code == 200
    assert resp.json()["time_boundary"] == 12
    assert resp.json()["is_extended"] is True

    resp = await client.post(
        f"/api/v1/complaints/{complaint_id}/status", json={"status": "resolved"}, headers=officer_h
    )
    assert resp.status_code == 200

    close_body = {"remarks": "Pump repaired", "proof_reference": "docs/repair-0417.jpg"}
    resp = await client.post(
        f"/api/v1/complaints/{complaint_id}/close", json=close_body, headers=officer_h
    )
    assert resp.status_code == 200
    assert resp.json()["is_complaint_closed"] is True
    assert resp.json()["closing_details"]["remarks"] == "Pump repaired"

    resp = await client.post(
        f"/api/v1/complaints/{complaint_id}/close", json=close_body, headers=officer_h
    )
    assert resp.status_code == 409
    assert resp.json() == {
        "detail": resp.json()["detail"],
        "code": "ALREADY_CLOSED",
    }

    resp = await client.get(f"/api/v1/complaints/{complaint_id}/events")
    assert resp.status_code == 200
    assert [e["event_type"] for e in resp.json()] == [
        "complaint_created",
        "complaint_assigned",
        "extension_requested",
        "extension_decided",
        "complaint_status_changed",
        "complaint_closed",
    ]
    assert [e["sequence"] for e in resp.json()] == [1, 2, 3, 4, 5, 6]


@pytest.mark.asyncio
async def test_invalid_transition_is_409(client):
    resp = await client.post("/api/v1/complaints", json=complaint_payload())
    complaint_id = resp.json()["id"]

    resp = await client.post(
        f"/api/v1/complaints/{complaint_id}/status", json={"status": "resolved"}
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_citizen_access_is_limited(client, citizen_user):
    citizen_h = _as(citizen_user)
    resp = await client.post("/api/v1/complaints", json=complaint_payload())
    complaint_id = resp.json()["id"]

    resp = await client.get("/api/v1/complaints", headers=citizen_h)
    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"

    # Filed by the admin, so not visible to the citizen
    resp = await client.get(f"/api/v1/complaints/{complaint_id}", headers=citizen_h)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_unknown_complaint_is_404(client):
    resp = await client.get("/api/v1/complaints/01011999MLA999")
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"

    resp = await client.post(
        f"/api/v1/complaints/{uuid.uuid4()}/assign", json={"officer_id": str(uuid.uuid4())}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_invalid_extension_days_are_422(client, officer_user):
    officer_id = str(officer_user.id)
    resp = await client.post("/api/v1/complaints", json=complaint_payload())
    complaint_id = resp.json()["id"]
    await client.post(f"/api/v1/complaints/{complaint_id}/assign", json={"officer_id": officer_id})

    resp = await client.post(
        f"/api/v1/complaints/{complaint_id}/extensions", json={"days_requested": 0}
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "VALIDATION_ERROR"

    resp = await client.post(
        f"/api/v1/complaints/{complaint_id}/extensions", json={"days_requested": "5"}
    )
    assert resp.status_code == 422
    resp = await client.get(f"/api/v1/complaints/{complaint_id}/extensions")
    assert resp.json() == []


@pytest.mark.asyncio
async def test_list_filters_and_pagination(client, officer_user):
    officer_id = str(officer_user.id)
    ids = []
    for category in ("water", "roads", "water"):
        resp = await client.post("/api/v1/complaints", json=complaint_payload(category=category))
        ids.append(resp.json()["id"])
    await client.post(f"/api/v1/complaints/{ids[0]}/assign", json={"officer_id": officer_id})

    resp = await client.get("/api/v1/complaints", params={"category": "water", "page_size": 1})
    data = resp.json()
    assert data["total"] == 2
    assert data["pages"] == 2
    assert len(data["items"]) == 1

    resp = await client.get("/api/v1/complaints", params={"status": "in_progress"})
    assert [c["id"] for c in resp.json()["items"]] == [ids[0]]


@pytest.mark.asyncio
async def test_snapshot_and_comparison(client):
    for _ in range(3):
        await client.post("/api/v1/complaints", json=complaint_payload())

    resp = await client.post(
        "/api/v1/snapshots",
        json={"entity_type": "district", "entity_code": "BDN", "entity_name": "Badaun"},
    )
    assert resp.status_code == 201
    snapshot = resp.json()
    assert snapshot["total_complaints"] == 3
    assert snapshot["snapshot_date"] == "2024-03-04"
    assert snapshot["by_status"]["pending"] == 3

    resp = await client.get("/api/v1/snapshots/district/BDN", params={"period": "daily"})
    assert [s["id"] for s in resp.json()] == [snapshot["id"]]

    resp = await client.get("/api/v1/snapshots/district/BDN/comparison")
    assert resp.status_code == 200
    assert resp.json()["current"] == 3
    assert resp.json()["previous"] == 0
    assert resp.json()["trend"] == "up"


@pytest.mark.asyncio
async def test_snapshot_requires_admin(client, officer_user):
    resp = await client.post(
        "/api/v1/snapshots",
        json={"entity_type": "district", "entity_code": "BDN"},
        headers=_as(officer_user),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_redeliver_requeues_events(client, publisher, sink):
    await client.post("/api/v1/complaints", json=complaint_payload())
    await publisher.drain()
    sink.events.clear()

    resp = await client.post("/api/v1/events/redeliver", json={"since": "2024-03-04T08:00:00Z"})
    assert resp.status_code == 200
    assert resp.json()["queued"] == 1

    await publisher.drain()
    assert [e.event_type for e in sink.events] == ["complaint_created"]


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["events_dropped"] == 0
