"""
Appointment writes with their side effects.

Each write goes to the store first; only after it succeeds are the
referenced slots synchronized and a notification dispatched. Neither side
effect can fail the write.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import ValidationError

from booking_engine.scheduling.status import parse_appointment_status
from booking_engine.scheduling.sync import SyncResult, sync_slot_status
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import Appointment, PatchOperation
from booking_engine.services.notifications import notify_status_change

logger = logging.getLogger(__name__)


class InvalidAppointmentError(ValueError):
    pass


class InvalidAppointmentStatusError(InvalidAppointmentError):
    pass


@dataclass
class AppointmentWrite:
    appointment: Appointment
    sync: Optional[SyncResult] = None
    notification: Optional[dict] = None


def require_appointment_status(status) -> str:
    parsed = parse_appointment_status(status)
    if parsed is None:
        raise InvalidAppointmentStatusError(f"Invalid appointment status: {status}")
    return parsed.value


async def create_appointment(store: FHIRStore, resource: dict) -> AppointmentWrite:
    status = require_appointment_status(resource.get("status"))
    try:
        source = Appointment.model_validate(dict(resource, resourceType="Appointment"))
    except ValidationError as e:
        fields = sorted({".".join(str(part) for part in error["loc"]) for error in e.errors()})
        raise InvalidAppointmentError(f"Invalid appointment fields: {', '.join(fields)}") from e

    created = await store.create_appointment(dict(resource, resourceType="Appointment"))
    logger.info("Created Appointment/%s with status %s", created.id, status)

    # The store may echo a minimal resource, so sync from what was submitted
    source = source.model_copy(update={"id": created.id})
    sync = await sync_slot_status(store, source, None, status)
    notification = await notify_status_change(store, source, status)
    return AppointmentWrite(appointment=created, sync=sync, notification=notification)


async def patch_appointment(
    store: FHIRStore, appointment_id: str, operations: List[PatchOperation]
) -> AppointmentWrite:
    status_op = next((op for op in operations if op.path == "/status"), None)
    new_status = require_appointment_status(status_op.value) if status_op else None

    current = await store.get_appointment(appointment_id)
    updated = await store.patch_appointment(appointment_id, operations)

    write = AppointmentWrite(appointment=updated)
    if new_status is not None:
        write.sync = await sync_slot_status(store, current, current.status, new_status)
        if current.status != new_status:
            write.notification = await notify_status_change(store, current, new_status)
    return write


async def update_appointment_status(
    store: FHIRStore,
    appointment_id: str,
    status: str,
    participant_updates: Optional[List[dict]] = None,
) -> AppointmentWrite:
    """Full-resource update (PUT) of status and participant statuses."""
    new_status = require_appointment_status(status)
    current = await store.get_appointment(appointment_id)

    resource = current.to_fhir()
    resource["status"] = new_status
    for update in participant_updates or []:
        for participant in resource.get("participant", []):
            if participant.get("actor", {}).get("reference") == update.get("reference"):
                participant["status"] = update.get("status")

    updated = await store.update_appointment(appointment_id, resource)
    write = AppointmentWrite(appointment=updated)
    write.sync = await sync_slot_status(store, current, current.status, new_status)
    if current.status != new_status:
        write.notification = await notify_status_change(store, current, new_status)
    return write
