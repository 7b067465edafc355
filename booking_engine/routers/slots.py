from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from booking_engine.dependencies import get_fhir_store, get_practitioner_lock
from booking_engine.scheduling.committer import create_slots_with_overlap_validation
from booking_engine.scheduling.locks import PractitionerBusyError, PractitionerLock
from booking_engine.scheduling.overlap import validate_batch
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import PatchOperation, SlotStatus

router = APIRouter(
    prefix="/Slot",
    tags=["slots"],
    responses={404: {"description": "Not found"}},
)


def _require_slot_list(payload: dict) -> list:
    slots = payload.get("slots")
    if not isinstance(slots, list) or not slots:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid request: slots must be a non-empty array",
        )
    return slots


@router.post("/batch")
async def create_slot_batch(
    payload: dict = Body(..., description='{"slots": [Slot, ...]}'),
    store: FHIRStore = Depends(get_fhir_store),
    lock: Optional[PractitionerLock] = Depends(get_practitioner_lock),
):
    """
    Create a batch of slots, rejecting any that overlap an existing slot of
    the same practitioner or an earlier slot in the batch.
    201 if anything was created, 400 otherwise.
    """
    slots = _require_slot_list(payload)
    try:
        result = await create_slots_with_overlap_validation(store, slots, lock=lock)
    except PractitionerBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    code = status.HTTP_201_CREATED if result.created else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=result.to_response(total=len(slots)))


@router.post("/batch/validate")
async def validate_slot_batch(
    payload: dict = Body(...),
    store: FHIRStore = Depends(get_fhir_store),
):
    """Dry run of batch validation. Nothing is written."""
    slots = _require_slot_list(payload)
    result = await validate_batch(store, slots)
    universe = result.universe
    return {
        "total": len(slots),
        "valid": [request.raw for request in result.accepted],
        "rejected": [r.model_dump() for r in result.rejected],
        "universe": None if universe is None else {
            "practitioner": universe.practitioner_id,
            "schedules": sorted(universe.schedule_ids),
            "fallback": universe.is_fallback,
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_slot(
    slot: dict = Body(...),
    store: FHIRStore = Depends(get_fhir_store),
    lock: Optional[PractitionerLock] = Depends(get_practitioner_lock),
):
    """Create one slot through the same overlap validation as a batch."""
    try:
        result = await create_slots_with_overlap_validation(store, [slot], lock=lock)
    except PractitionerBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if result.created:
        return result.created[0]
    rejection = result.rejected[0]
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT if rejection.conflict else status.HTTP_400_BAD_REQUEST,
        detail=rejection.reason,
    )


@router.get("/{slot_id}")
async def get_slot(slot_id: str, store: FHIRStore = Depends(get_fhir_store)):
    slot = await store.get_slot(slot_id)
    return slot.to_fhir()


@router.patch("/{slot_id}")
async def patch_slot(
    slot_id: str,
    operations: List[PatchOperation],
    store: FHIRStore = Depends(get_fhir_store),
):
    """Status-only JSON-Patch of a slot."""
    if not operations:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty patch")
    allowed = {s.value for s in SlotStatus}
    for op in operations:
        if op.path != "/status" or op.op not in ("add", "replace"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only the slot status can be patched",
            )
        if op.value not in allowed:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid slot status: {op.value}",
            )
    slot = await store.patch_slot(slot_id, operations)
    return slot.to_fhir()
