"""
Batch Slot Committer.

Creates every accepted slot concurrently. Each creation is isolated: a
failure or timeout becomes a rejection for that item only, and every
sibling runs to completion. Cancelling the caller cancels all of them.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, List, Optional

from booking_engine.config import settings
from booking_engine.scheduling.locks import PractitionerLock
from booking_engine.scheduling.overlap import (
    Rejection,
    SlotCreationRequest,
    check_overlaps,
    merge_validation,
    parse_slot_requests,
)
from booking_engine.scheduling.resolver import resolve_schedule_universe
from booking_engine.services.fhir.interface import FHIRStore

logger = logging.getLogger(__name__)


@dataclass
class BatchCreationResult:
    created: List[dict] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)

    def to_response(self, total: int) -> dict:
        return {
            "success": len(self.created) > 0,
            "total": total,
            "created": len(self.created),
            "rejected": len(self.rejected),
            "results": {
                "created": self.created,
                "rejected": [r.model_dump() for r in self.rejected],
            },
        }


async def _create_one(store: FHIRStore, request: SlotCreationRequest, timeout: float) -> dict:
    slot = await asyncio.wait_for(store.create_slot(request.to_resource()), timeout=timeout)
    return slot.to_fhir()


def _failure_reason(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "Creation failed: timed out waiting for the FHIR server"
    return f"Creation failed: {str(error) or type(error).__name__}"


async def commit_slots(
    store: FHIRStore,
    accepted: List[SlotCreationRequest],
    timeout: Optional[float] = None,
) -> BatchCreationResult:
    """POST every accepted request; collect successes and per-item failures."""
    if timeout is None:
        timeout = settings.fhir_timeout_seconds

    results = await asyncio.gather(
        *(_create_one(store, request, timeout) for request in accepted),
        return_exceptions=True,
    )

    result = BatchCreationResult()
    for request, outcome in zip(accepted, results):
        if isinstance(outcome, BaseException):
            logger.warning("Slot creation failed for item %d: %s", request.index, outcome)
            result.rejected.append(
                Rejection(slot=request.raw, reason=_failure_reason(outcome), index=request.index)
            )
        else:
            result.created.append(outcome)

    logger.info("Creation complete: %d created, %d failed", len(result.created), len(result.rejected))
    return result


@asynccontextmanager
async def _maybe_locked(lock: Optional[PractitionerLock], lock_key: str):
    if lock is None:
        yield
        return
    async with lock.hold(lock_key):
        yield


async def create_slots_with_overlap_validation(
    store: FHIRStore,
    raw_slots: List[Any],
    lock: Optional[PractitionerLock] = None,
) -> BatchCreationResult:
    """Validate a batch against the practitioner's slots and commit the survivors.

    Validation rejections come first (in input order), followed by commit
    failures. Raises PractitionerBusyError if the practitioner is locked.
    """
    requests, rejected = parse_slot_requests(raw_slots)
    if not requests:
        return BatchCreationResult(created=[], rejected=rejected)

    universe = await resolve_schedule_universe(store, requests[0].schedule_id)

    async with _maybe_locked(lock, universe.lock_key):
        accepted, conflicts = await check_overlaps(store, requests, universe)
        validation = merge_validation(accepted, rejected + conflicts, universe)
        committed = await commit_slots(store, validation.accepted)

    return BatchCreationResult(
        created=committed.created,
        rejected=validation.rejected + committed.rejected,
    )
