from datetime import datetime, timedelta, timezone

import pytest

from booking_engine.scheduling.intervals import TimeInterval, find_overlap, has_any_overlap, overlaps


T0 = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)


def interval(start_min: int, end_min: int, schedule_id: str = "s1", slot_id=None) -> TimeInterval:
    return TimeInterval(
        start=T0 + timedelta(minutes=start_min),
        end=T0 + timedelta(minutes=end_min),
        schedule_id=schedule_id,
        slot_id=slot_id,
    )


def test_overlap_is_symmetric():
    a, b = interval(0, 30), interval(15, 45)
    assert overlaps(a, b)
    assert overlaps(b, a)


def test_interval_overlaps_itself():
    a = interval(0, 30)
    assert overlaps(a, a)


def test_touching_endpoints_do_not_overlap():
    assert not overlaps(interval(0, 30), interval(30, 60))
    assert not overlaps(interval(30, 60), interval(0, 30))


def test_containment_overlaps():
    assert overlaps(interval(0, 120), interval(30, 45))


def test_start_must_precede_end():
    with pytest.raises(ValueError):
        interval(30, 30)
    with pytest.raises(ValueError):
        interval(30, 0)


def test_find_overlap_returns_first_conflict():
    existing = [interval(60, 90, slot_id="a"), interval(10, 40, slot_id="b"), interval(20, 50, slot_id="c")]
    found = find_overlap(interval(30, 45), existing)
    assert found.slot_id == "b"


def test_find_overlap_none():
    assert find_overlap(interval(0, 30), [interval(30, 60)]) is None
    assert not has_any_overlap(interval(0, 30), [])


def test_overlap_ignores_schedule():
    # Practitioner-wide checks compare intervals on different schedules
    assert overlaps(interval(0, 30, "clinic"), interval(15, 45, "tele"))
