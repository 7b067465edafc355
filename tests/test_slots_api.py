"""API tests for the Slot routes."""

from unittest.mock import AsyncMock

import pytest

from booking_engine.config import settings
from booking_engine.services.fhir.errors import FHIRStoreUnavailableError


pytestmark = pytest.mark.asyncio


async def test_batch_example(client, auth_headers, slot_request):
    slots = [
        slot_request("sched-clinic", (10, 0), (10, 30)),
        slot_request("sched-clinic", (10, 15), (10, 45)),
        slot_request("sched-clinic", (11, 0), (11, 30)),
    ]

    response = await client.post("/api/fhir/Slot/batch", json={"slots": slots}, headers=auth_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["total"] == 3
    assert data["created"] == 2
    assert data["rejected"] == 1
    assert data["results"]["rejected"][0]["slot"] == slots[1]
    assert [s["start"] for s in data["results"]["created"]] == [slots[0]["start"], slots[2]["start"]]


async def test_batch_all_rejected_is_400(client, auth_headers, store, slot_request, at):
    store.add_slot("sched-tele", at(10, 0), at(12, 0))
    slots = [slot_request("sched-clinic", (10, 0), (10, 30))]

    response = await client.post("/api/fhir/Slot/batch", json={"slots": slots}, headers=auth_headers)

    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert "cross-schedule" in data["results"]["rejected"][0]["reason"]


@pytest.mark.parametrize("payload", [{}, {"slots": []}, {"slots": "nope"}])
async def test_batch_requires_slot_list(client, auth_headers, payload):
    response = await client.post("/api/fhir/Slot/batch", json=payload, headers=auth_headers)
    assert response.status_code == 400
    assert "non-empty array" in response.json()["detail"]


async def test_batch_busy_practitioner_is_409(client, auth_headers, fake_redis, slot_request, monkeypatch):
    monkeypatch.setattr(settings, "practitioner_lock_retries", 0)
    await fake_redis.set("slot-batch-lock:practitioner:prac-1", "other-request")

    response = await client.post(
        "/api/fhir/Slot/batch",
        json={"slots": [slot_request("sched-clinic", (9, 0), (9, 30))]},
        headers=auth_headers,
    )

    assert response.status_code == 409


async def test_batch_validate_writes_nothing(client, auth_headers, store, slot_request):
    slots = [
        slot_request("sched-clinic", (10, 0), (10, 30)),
        slot_request("sched-tele", (10, 15), (10, 45)),
    ]

    response = await client.post(
        "/api/fhir/Slot/batch/validate", json={"slots": slots}, headers=auth_headers
    )

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] == [slots[0]]
    assert len(data["rejected"]) == 1
    assert data["universe"]["practitioner"] == "prac-1"
    assert data["universe"]["schedules"] == ["sched-clinic", "sched-tele"]
    assert store.writes == []


async def test_create_single_slot(client, auth_headers, slot_request):
    response = await client.post(
        "/api/fhir/Slot",
        json=slot_request("sched-clinic", (9, 0), (9, 30), comment="New patients"),
        headers=auth_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["id"]
    assert data["status"] == "free"
    assert data["comment"] == "New patients"


async def test_create_single_overlapping_slot_is_409(client, auth_headers, store, slot_request, at):
    store.add_slot("sched-clinic", at(9, 0), at(10, 0))

    response = await client.post(
        "/api/fhir/Slot", json=slot_request("sched-tele", (9, 30), (10, 30)), headers=auth_headers
    )

    assert response.status_code == 409
    assert "Overlaps with existing slot" in response.json()["detail"]


async def test_create_single_invalid_slot_is_400(client, auth_headers):
    response = await client.post(
        "/api/fhir/Slot", json={"resourceType": "Slot"}, headers=auth_headers
    )
    assert response.status_code == 400


async def test_get_and_patch_slot(client, auth_headers, store, at):
    slot = store.add_slot("sched-clinic", at(9, 0), at(9, 30))

    response = await client.get(f"/api/fhir/Slot/{slot['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "free"

    response = await client.patch(
        f"/api/fhir/Slot/{slot['id']}",
        json=[{"op": "replace", "path": "/status", "value": "busy-unavailable"}],
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "busy-unavailable"


async def test_patch_slot_rejects_bad_status(client, auth_headers, store, at):
    slot = store.add_slot("sched-clinic", at(9, 0), at(9, 30))

    response = await client.patch(
        f"/api/fhir/Slot/{slot['id']}",
        json=[{"op": "replace", "path": "/status", "value": "reserved"}],
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert store.writes == []


async def test_patch_slot_rejects_other_fields(client, auth_headers, store, at):
    slot = store.add_slot("sched-clinic", at(9, 0), at(9, 30))

    response = await client.patch(
        f"/api/fhir/Slot/{slot['id']}",
        json=[{"op": "replace", "path": "/start", "value": "2030-01-01T00:00:00Z"}],
        headers=auth_headers,
    )

    assert response.status_code == 400


async def test_missing_slot_is_404(client, auth_headers):
    response = await client.get("/api/fhir/Slot/nope", headers=auth_headers)
    assert response.status_code == 404
    assert "not found" in response.json()["error"]


async def test_store_outage_is_503(client, auth_headers, store):
    store.get_slot = AsyncMock(side_effect=FHIRStoreUnavailableError("FHIR server unreachable"))

    response = await client.get("/api/fhir/Slot/slot-1", headers=auth_headers)

    assert response.status_code == 503
    assert response.json()["error"] == "FHIR server unreachable"
