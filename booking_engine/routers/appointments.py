from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel

from booking_engine.dependencies import get_fhir_store
from booking_engine.services import appointments
from booking_engine.services.appointments import InvalidAppointmentError
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import PatchOperation

router = APIRouter(
    prefix="/Appointment",
    tags=["appointments"],
    responses={404: {"description": "Not found"}},
)


class ParticipantUpdate(BaseModel):
    reference: str
    status: str


class AppointmentStatusUpdate(BaseModel):
    status: str
    participantUpdates: Optional[List[ParticipantUpdate]] = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_appointment(
    resource: dict = Body(...),
    store: FHIRStore = Depends(get_fhir_store),
):
    """
    Create an appointment, then move its slots to the derived status.
    """
    try:
        write = await appointments.create_appointment(store, resource)
    except InvalidAppointmentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return write.appointment.to_fhir()


@router.get("/{appointment_id}")
async def get_appointment(appointment_id: str, store: FHIRStore = Depends(get_fhir_store)):
    appointment = await store.get_appointment(appointment_id)
    return appointment.to_fhir()


@router.patch("/{appointment_id}")
async def patch_appointment(
    appointment_id: str,
    operations: List[PatchOperation],
    store: FHIRStore = Depends(get_fhir_store),
):
    """
    Apply a JSON-Patch. A `/status` change syncs the referenced slots and
    notifies the patient.
    """
    if not operations:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty patch")
    try:
        write = await appointments.patch_appointment(store, appointment_id, operations)
    except InvalidAppointmentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return write.appointment.to_fhir()


@router.put("/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    update: AppointmentStatusUpdate,
    store: FHIRStore = Depends(get_fhir_store),
):
    """Set the appointment status and, optionally, participant statuses."""
    participant_updates = [p.model_dump() for p in update.participantUpdates or []]
    try:
        write = await appointments.update_appointment_status(
            store, appointment_id, update.status, participant_updates
        )
    except InvalidAppointmentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return write.appointment.to_fhir()
