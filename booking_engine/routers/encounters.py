from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from booking_engine.dependencies import get_fhir_store
from booking_engine.scheduling.encounters import (
    EncounterExistsError,
    create_encounter_for_appointment,
    transition_encounter,
)
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import PatchOperation

router = APIRouter(
    prefix="/Encounter",
    tags=["encounters"],
    responses={404: {"description": "Not found"}},
)


class CreateForAppointmentRequest(BaseModel):
    appointmentId: str
    initialStatus: str = "planned"


@router.post("/create-for-appointment", status_code=status.HTTP_201_CREATED)
async def create_for_appointment(
    body: CreateForAppointmentRequest,
    store: FHIRStore = Depends(get_fhir_store),
):
    """
    Start an encounter for a booked or arrived appointment.
    409 if one already exists.
    """
    try:
        encounter = await create_encounter_for_appointment(store, body.appointmentId, body.initialStatus)
    except EncounterExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return encounter.to_fhir()


@router.get("/{encounter_id}")
async def get_encounter(encounter_id: str, store: FHIRStore = Depends(get_fhir_store)):
    encounter = await store.get_encounter(encounter_id)
    return encounter.to_fhir()


@router.patch("/{encounter_id}")
async def patch_encounter(
    encounter_id: str,
    operations: List[PatchOperation],
    store: FHIRStore = Depends(get_fhir_store),
):
    """
    Apply a JSON-Patch. Status changes must follow the encounter
    transition table; illegal ones are rejected with 400.
    """
    if not operations:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty patch")
    try:
        encounter = await transition_encounter(store, encounter_id, operations)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return encounter.to_fhir()
