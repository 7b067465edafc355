"""Tests for batch overlap validation."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from booking_engine.scheduling.overlap import (
    check_overlaps,
    parse_slot_requests,
    validate_batch,
)
from booking_engine.scheduling.resolver import resolve_schedule_universe


@pytest.mark.asyncio
async def test_example_batch_first_in_batch_wins(store, slot_request):
    slots = [
        slot_request("sched-clinic", (10, 0), (10, 30)),
        slot_request("sched-clinic", (10, 15), (10, 45)),
        slot_request("sched-clinic", (11, 0), (11, 30)),
    ]

    result = await validate_batch(store, slots)

    assert [r.raw for r in result.accepted] == [slots[0], slots[2]]
    assert len(result.rejected) == 1
    assert result.rejected[0].slot == slots[1]
    assert "another slot being created" in result.rejected[0].reason


@pytest.mark.asyncio
async def test_conflict_with_existing_slot_on_other_schedule(store, slot_request, at):
    existing = store.add_slot("sched-tele", at(9, 0), at(9, 30))
    slots = [slot_request("sched-clinic", (9, 15), (9, 45))]

    result = await validate_batch(store, slots)

    assert result.accepted == []
    reason = result.rejected[0].reason
    assert existing["id"] in reason
    assert "sched-tele" in reason
    assert "cross-schedule" in reason
    assert result.rejected[0].conflict


@pytest.mark.asyncio
async def test_same_schedule_conflict_is_labelled(store, slot_request, at):
    store.add_slot("sched-clinic", at(9, 0), at(10, 0))
    result = await validate_batch(store, [slot_request("sched-clinic", (9, 30), (10, 30))])
    assert "same-schedule" in result.rejected[0].reason


@pytest.mark.asyncio
async def test_other_practitioner_does_not_conflict(store, slot_request, at):
    store.add_slot("sched-other", at(9, 0), at(10, 0))
    result = await validate_batch(store, [slot_request("sched-clinic", (9, 0), (10, 0))])
    assert len(result.accepted) == 1
    assert result.rejected == []


@pytest.mark.asyncio
async def test_touching_existing_slot_is_accepted(store, slot_request, at):
    store.add_slot("sched-clinic", at(9, 0), at(10, 0))
    result = await validate_batch(store, [slot_request("sched-clinic", (10, 0), (10, 30))])
    assert len(result.accepted) == 1


@pytest.mark.asyncio
async def test_retired_slots_are_ignored(store, slot_request, at):
    store.add_slot("sched-clinic", at(9, 0), at(10, 0), status="entered-in-error")
    result = await validate_batch(store, [slot_request("sched-clinic", (9, 0), (10, 0))])
    assert len(result.accepted) == 1


@pytest.mark.asyncio
async def test_existing_slot_starting_before_batch_is_caught(store, slot_request, at):
    # Starts before the earliest request but runs into it
    store.add_slot("sched-clinic", at(8, 0), at(11, 0))
    result = await validate_batch(store, [slot_request("sched-clinic", (10, 0), (10, 30))])
    assert result.accepted == []
    assert "Overlaps with existing slot" in result.rejected[0].reason


@pytest.mark.asyncio
async def test_tie_break_unaffected_by_unrelated_items(store, slot_request):
    first = slot_request("sched-clinic", (14, 0), (14, 30))
    second = slot_request("sched-clinic", (14, 10), (14, 40))
    unrelated = slot_request("sched-tele", (16, 0), (16, 30))

    plain = await validate_batch(store, [first, second])
    padded = await validate_batch(store, [unrelated, first, unrelated, second])

    assert plain.accepted[0].raw == first
    assert [r.slot for r in plain.rejected] == [second]
    assert first in [r.raw for r in padded.accepted]
    assert second in [r.slot for r in padded.rejected]


@pytest.mark.asyncio
async def test_every_item_lands_in_exactly_one_list(store, slot_request):
    slots = [
        slot_request("sched-clinic", (9, 0), (9, 30)),
        {"resourceType": "Slot"},
        "not a slot",
        slot_request("sched-clinic", (9, 0), (9, 30)),
        slot_request("sched-other", (12, 0), (12, 30)),
        slot_request("sched-tele", (13, 0), (13, 30)),
    ]

    result = await validate_batch(store, slots)

    assert len(result.accepted) + len(result.rejected) == len(slots)
    assert [r.index for r in result.rejected] == sorted(r.index for r in result.rejected)


@pytest.mark.asyncio
async def test_schedule_outside_universe_is_rejected(store, slot_request):
    slots = [
        slot_request("sched-clinic", (9, 0), (9, 30)),
        slot_request("sched-other", (9, 0), (9, 30)),
    ]
    result = await validate_batch(store, slots)
    assert len(result.accepted) == 1
    assert "outside the overlap universe" in result.rejected[0].reason


@pytest.mark.asyncio
async def test_single_wide_query(store, slot_request):
    store.search_slots = AsyncMock(return_value=[])
    slots = [
        slot_request("sched-clinic", (9, 0), (9, 30)),
        slot_request("sched-tele", (15, 0), (15, 30)),
    ]

    await validate_batch(store, slots)

    store.search_slots.assert_awaited_once()
    args, kwargs = store.search_slots.call_args
    assert sorted(args[0]) == ["sched-clinic", "sched-tele"]
    assert kwargs["start_lt"] == max(r.end for r in parse_slot_requests(slots)[0])


@pytest.mark.asyncio
async def test_lookback_is_configurable(store, slot_request, at):
    store.add_slot("sched-clinic", at(8, 0), at(11, 0))
    requests, _ = parse_slot_requests([slot_request("sched-clinic", (10, 0), (10, 30))])
    universe = await resolve_schedule_universe(store, "sched-clinic")

    accepted, rejected = await check_overlaps(store, requests, universe, lookback=timedelta(0))

    # Without lookback the long slot starts outside the query window
    assert len(accepted) == 1
    assert rejected == []


class TestShapeValidation:
    def test_reasons(self, slot_request, at, day):
        valid = slot_request("sched-clinic", (9, 0), (9, 30))
        slots = [
            dict(valid, resourceType="Appointment"),
            {k: v for k, v in valid.items() if k != "end"},
            dict(valid, schedule={}),
            dict(valid, status="busy-tentative"),
            dict(valid, start="tomorrow"),
            dict(valid, start=at(9, 0).replace(tzinfo=None).isoformat()),
            dict(valid, start=valid["end"], end=valid["start"]),
            dict(valid, start=(day - timedelta(days=10)).isoformat()),
        ]

        requests, rejected = parse_slot_requests(slots)

        assert requests == []
        reasons = [r.reason for r in rejected]
        assert "resourceType" in reasons[0]
        assert "start and end times are required" in reasons[1]
        assert "schedule reference" in reasons[2]
        assert "Invalid slot status" in reasons[3]
        assert "ISO-8601" in reasons[4]
        assert "timezone" in reasons[5]
        assert "before end" in reasons[6]
        assert "future" in reasons[7]
        assert all(f"(index {i})" in reason for i, reason in enumerate(reasons))

    def test_status_defaults_to_free(self, slot_request):
        requests, _ = parse_slot_requests([slot_request("sched-clinic", (9, 0), (9, 30))])
        assert requests[0].status == "free"
        assert requests[0].to_resource()["status"] == "free"

    def test_extra_fields_pass_through(self, slot_request):
        raw = slot_request("sched-clinic", (9, 0), (9, 30), comment="Walk-ins", status="busy")
        requests, _ = parse_slot_requests([raw])
        resource = requests[0].to_resource()
        assert resource["comment"] == "Walk-ins"
        assert resource["status"] == "busy"
        assert resource["start"] == raw["start"]

    def test_past_slots_allowed_when_disabled(self, slot_request, day):
        raw = slot_request("sched-clinic", (9, 0), (9, 30))
        raw["start"] = (day - timedelta(days=10)).isoformat()
        raw["end"] = (day - timedelta(days=10, minutes=-30)).isoformat()
        requests, rejected = parse_slot_requests([raw], reject_past=False)
        assert len(requests) == 1
        assert rejected == []
