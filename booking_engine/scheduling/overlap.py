"""
Overlap Validator.

Partitions a batch of proposed slots into accepted and rejected requests:

1. Each raw item is shape-checked before any external call.
2. The practitioner-wide schedule universe is resolved from the first
   valid request (a batch is assumed to target one practitioner; items on
   schedules outside that universe are rejected).
3. Existing slots across the universe are fetched with one wide query.
4. In input order, an item is rejected if it overlaps an existing slot or
   an item already accepted earlier in the batch. First in batch wins.

Every input item ends up in exactly one of the two lists.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from booking_engine.config import settings
from booking_engine.scheduling.intervals import TimeInterval, find_overlap
from booking_engine.scheduling.resolver import ScheduleUniverse, resolve_schedule_universe
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import Reference, SlotStatus

logger = logging.getLogger(__name__)

CREATABLE_STATUSES = (SlotStatus.FREE.value, SlotStatus.BUSY.value)


class SlotCreationRequest(BaseModel):
    """A proposed Slot. Extra FHIR fields (serviceType, comment, ...) pass through."""

    model_config = ConfigDict(extra="allow")

    resourceType: str = "Slot"
    start: datetime
    end: datetime
    schedule: Reference
    status: str = SlotStatus.FREE.value

    _raw: dict = PrivateAttr(default_factory=dict)
    _index: int = PrivateAttr(default=0)

    @property
    def schedule_id(self) -> str:
        return self.schedule.id_for("Schedule") or self.schedule.reference or ""

    @property
    def index(self) -> int:
        return self._index

    @property
    def raw(self) -> dict:
        return self._raw

    def to_interval(self) -> TimeInterval:
        return TimeInterval(start=self.start, end=self.end, schedule_id=self.schedule_id)

    def to_resource(self) -> dict:
        """The caller's payload as sent, with the default status filled in."""
        return dict(self._raw, resourceType="Slot", status=self.status)


class Rejection(BaseModel):
    slot: Any
    reason: str
    index: int = Field(default=-1, exclude=True)
    conflict: bool = Field(default=False, exclude=True)


@dataclass
class ValidationResult:
    accepted: List[SlotCreationRequest] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)
    universe: Optional[ScheduleUniverse] = None


class SlotRequestError(ValueError):
    pass


def _is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.tzinfo.utcoffset(value) is not None


def parse_slot_request(
    raw: Any, index: int, now: Optional[datetime] = None, reject_past: bool = True
) -> SlotCreationRequest:
    """Validate one raw batch item. Raises SlotRequestError with the reason."""
    if not isinstance(raw, dict):
        raise SlotRequestError("Invalid slot data: expected a Slot object")
    if raw.get("resourceType") != "Slot":
        raise SlotRequestError('Invalid slot data: resourceType must be "Slot"')
    if not raw.get("start") or not raw.get("end"):
        raise SlotRequestError("Invalid slot data: start and end times are required")
    schedule = raw.get("schedule")
    if not isinstance(schedule, dict) or not schedule.get("reference"):
        raise SlotRequestError("Invalid slot data: schedule reference is required")
    status = raw.get("status") or SlotStatus.FREE.value
    if status not in CREATABLE_STATUSES:
        raise SlotRequestError('Invalid slot status: must be "free" or "busy"')

    try:
        request = SlotCreationRequest.model_validate(dict(raw, status=status))
    except ValidationError:
        raise SlotRequestError("Invalid slot data: start and end must be ISO-8601 timestamps")

    if not (_is_aware(request.start) and _is_aware(request.end)):
        raise SlotRequestError("Invalid slot data: start and end must include a timezone offset")
    if request.start >= request.end:
        raise SlotRequestError("Invalid slot data: start time must be before end time")
    if reject_past and request.start <= (now or datetime.now(timezone.utc)):
        raise SlotRequestError("Invalid slot data: start time must be in the future")

    request._raw = dict(raw)
    request._index = index
    return request


def parse_slot_requests(
    raw_slots: List[Any], now: Optional[datetime] = None, reject_past: Optional[bool] = None
) -> Tuple[List[SlotCreationRequest], List[Rejection]]:
    if reject_past is None:
        reject_past = settings.reject_past_slots
    now = now or datetime.now(timezone.utc)

    valid: List[SlotCreationRequest] = []
    rejected: List[Rejection] = []
    for index, raw in enumerate(raw_slots):
        try:
            valid.append(parse_slot_request(raw, index, now=now, reject_past=reject_past))
        except SlotRequestError as e:
            rejected.append(Rejection(slot=raw, reason=f"{e} (index {index})", index=index))
    return valid, rejected


async def check_overlaps(
    store: FHIRStore,
    requests: List[SlotCreationRequest],
    universe: ScheduleUniverse,
    lookback: Optional[timedelta] = None,
    count: Optional[int] = None,
) -> Tuple[List[SlotCreationRequest], List[Rejection]]:
    """Check parsed requests against existing slots and each other."""
    if not requests:
        return [], []
    if lookback is None:
        lookback = timedelta(minutes=settings.slot_overlap_lookback_minutes)

    accepted: List[SlotCreationRequest] = []
    rejected: List[Rejection] = []

    in_universe = []
    for request in requests:
        if request.schedule_id in universe:
            in_universe.append(request)
        else:
            rejected.append(Rejection(
                slot=request.raw,
                reason=(
                    f"Schedule {request.schedule_id} is outside the overlap universe resolved from "
                    f"Schedule {universe.seed_schedule_id}; a batch must target one practitioner"
                ),
                index=request.index,
            ))
    if not in_universe:
        return accepted, rejected

    min_start = min(r.start for r in in_universe)
    max_end = max(r.end for r in in_universe)
    logger.info(
        "Checking %d slots for overlaps in range %s to %s across schedules %s",
        len(in_universe), min_start.isoformat(), max_end.isoformat(),
        ", ".join(sorted(universe.schedule_ids)),
    )

    existing_slots = await store.search_slots(
        sorted(universe.schedule_ids),
        start_ge=min_start - lookback,
        start_lt=max_end,
        count=count or settings.slot_search_count,
    )
    existing = [
        TimeInterval.from_slot(s)
        for s in existing_slots
        if s.status != SlotStatus.ENTERED_IN_ERROR.value and s.start < s.end
    ]
    logger.info("Found %d existing slots in range", len(existing))

    accepted_intervals: List[TimeInterval] = []
    for request in in_universe:
        interval = request.to_interval()

        conflict = find_overlap(interval, existing)
        if conflict is not None:
            kind = "same-schedule" if conflict.schedule_id == interval.schedule_id else "cross-schedule"
            rejected.append(Rejection(
                slot=request.raw,
                reason=(
                    f"Overlaps with existing slot {conflict.slot_id} ({conflict.describe()}) "
                    f"in schedule {conflict.schedule_id} ({kind} conflict)"
                ),
                index=request.index,
                conflict=True,
            ))
            continue

        conflict = find_overlap(interval, accepted_intervals)
        if conflict is not None:
            rejected.append(Rejection(
                slot=request.raw,
                reason=(
                    f"Overlaps with another slot being created ({conflict.describe()}) "
                    f"in schedule {conflict.schedule_id}"
                ),
                index=request.index,
                conflict=True,
            ))
            continue

        accepted.append(request)
        accepted_intervals.append(interval)

    return accepted, rejected


async def validate_batch(
    store: FHIRStore, raw_slots: List[Any], now: Optional[datetime] = None
) -> ValidationResult:
    """Run the full validation without committing anything."""
    requests, rejected = parse_slot_requests(raw_slots, now=now)
    if not requests:
        return ValidationResult(accepted=[], rejected=rejected)

    universe = await resolve_schedule_universe(store, requests[0].schedule_id)
    accepted, conflicts = await check_overlaps(store, requests, universe)
    return merge_validation(accepted, rejected + conflicts, universe)


def merge_validation(
    accepted: List[SlotCreationRequest],
    rejected: List[Rejection],
    universe: Optional[ScheduleUniverse],
) -> ValidationResult:
    rejected = sorted(rejected, key=lambda r: r.index)
    logger.info("Validation complete: %d valid, %d rejected", len(accepted), len(rejected))
    return ValidationResult(accepted=accepted, rejected=rejected, universe=universe)
