"""
Interval model and half-open overlap predicate.

Intervals are [start, end): touching endpoints do not overlap.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from booking_engine.services.fhir.models import Slot


@dataclass(frozen=True)
class TimeInterval:
    start: datetime
    end: datetime
    schedule_id: str
    slot_id: Optional[str] = None

    def __post_init__(self):
        if not self.start < self.end:
            raise ValueError(
                f"Interval start {self.start.isoformat()} must be before end {self.end.isoformat()}"
            )

    @classmethod
    def from_slot(cls, slot: Slot) -> "TimeInterval":
        return cls(start=slot.start, end=slot.end, schedule_id=slot.schedule_id, slot_id=slot.id)

    def describe(self) -> str:
        return f"{self.start.isoformat()} - {self.end.isoformat()}"


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    return a.start < b.end and b.start < a.end


def find_overlap(
    candidate: TimeInterval, existing: Iterable[TimeInterval]
) -> Optional[TimeInterval]:
    """Return the first interval in `existing` that overlaps `candidate`."""
    return next((e for e in existing if overlaps(candidate, e)), None)


def has_any_overlap(candidate: TimeInterval, existing: Iterable[TimeInterval]) -> bool:
    return find_overlap(candidate, existing) is not None
