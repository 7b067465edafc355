"""Appointment status notifications written as FHIR Communication resources.

Dispatch is a side effect of an appointment write: failures are logged
and swallowed so they never fail the booking itself.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from booking_engine.services.fhir.errors import FHIRStoreError
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import Appointment

logger = logging.getLogger(__name__)

COMMUNICATION_CATEGORY_SYSTEM = "http://terminology.hl7.org/CodeSystem/communication-category"

STATUS_MESSAGES = {
    "booked": "Your appointment request has been approved and confirmed.",
    "cancelled": "Your appointment has been cancelled. Please contact us if you have questions.",
    "arrived": "Thank you for arriving. Please check in at the front desk.",
    "checked-in": "You have been checked in. Please wait to be called.",
    "fulfilled": "Your appointment has been completed. Thank you for your visit.",
    "noshow": "You were marked as a no-show for your appointment. Please contact us.",
    "waitlist": "You have been added to the waitlist. We will notify you if a slot becomes available.",
    "proposed": "A new appointment time has been proposed. Please confirm if this works for you.",
    "entered-in-error": "This appointment was entered in error and has been removed.",
}


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, f"Your appointment status has been updated to {status}.")


def build_status_communication(
    appointment_id: str,
    patient_reference: str,
    practitioner_reference: str,
    message: str,
    sent: Optional[datetime] = None,
) -> dict:
    """Practitioner → patient notification about an appointment."""
    sent = sent or datetime.now(timezone.utc)
    return {
        "resourceType": "Communication",
        "status": "completed",
        "category": [{
            "coding": [{
                "system": COMMUNICATION_CATEGORY_SYSTEM,
                "code": "notification",
                "display": "Notification",
            }],
            "text": "Appointment Status Update",
        }],
        "subject": {"reference": patient_reference},
        "about": [{"reference": f"Appointment/{appointment_id}"}],
        "recipient": [{"reference": patient_reference}],
        "sender": {"reference": practitioner_reference},
        "sent": sent.isoformat().replace("+00:00", "Z"),
        "payload": [{"contentString": message}],
    }


async def notify_status_change(
    store: FHIRStore, appointment: Appointment, new_status: str
) -> Optional[dict]:
    """Write a status Communication. Returns it, or None if nothing was sent."""
    patient = appointment.participant_reference("Patient")
    practitioner = appointment.participant_reference("Practitioner")
    if patient is None or practitioner is None:
        logger.info("Appointment/%s missing participants; no notification sent", appointment.id)
        return None

    communication = build_status_communication(
        appointment.id, patient.reference, practitioner.reference, status_message(new_status)
    )
    try:
        return await store.create_communication(communication)
    except FHIRStoreError as e:
        logger.warning("Failed to send status notification for Appointment/%s: %s", appointment.id, e)
        return None
