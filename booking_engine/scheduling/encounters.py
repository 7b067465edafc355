"""
Encounter Transition Validator.

States:
  planned → arrived → triaged → in-progress ⇄ onleave
     ↓                              ↓
  (any active) → cancelled      finished
  finished / cancelled → entered-in-error (correction only)

Entering in-progress stamps period.start and entering finished stamps
period.end when they are not already set.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from booking_engine.services.fhir.errors import FHIRStoreError
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import Encounter, EncounterStatus, PatchOperation

logger = logging.getLogger(__name__)

INITIAL_ENCOUNTER_STATUS = EncounterStatus.PLANNED

# Valid state transitions
VALID_TRANSITIONS = {
    EncounterStatus.PLANNED: {
        EncounterStatus.ARRIVED,
        EncounterStatus.TRIAGED,
        EncounterStatus.IN_PROGRESS,
        EncounterStatus.CANCELLED,
        EncounterStatus.ENTERED_IN_ERROR,
    },
    EncounterStatus.ARRIVED: {EncounterStatus.TRIAGED, EncounterStatus.IN_PROGRESS, EncounterStatus.CANCELLED},
    EncounterStatus.TRIAGED: {EncounterStatus.IN_PROGRESS, EncounterStatus.CANCELLED},
    EncounterStatus.IN_PROGRESS: {EncounterStatus.ONLEAVE, EncounterStatus.FINISHED, EncounterStatus.CANCELLED},
    EncounterStatus.ONLEAVE: {EncounterStatus.IN_PROGRESS, EncounterStatus.FINISHED, EncounterStatus.CANCELLED},
    EncounterStatus.FINISHED: {EncounterStatus.ENTERED_IN_ERROR},
    EncounterStatus.CANCELLED: {EncounterStatus.ENTERED_IN_ERROR},
    EncounterStatus.ENTERED_IN_ERROR: set(),
    EncounterStatus.UNKNOWN: set(),
}


class InvalidTransitionError(ValueError):
    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid status transition from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class InvalidStatusError(ValueError):
    pass


def parse_encounter_status(value: Union[str, EncounterStatus, None]) -> EncounterStatus:
    try:
        return EncounterStatus(value)
    except ValueError:
        raise InvalidStatusError(f"Invalid status: {value}")


def is_valid_transition(from_status: EncounterStatus, to_status: EncounterStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def validate_transition(
    from_status: Union[str, EncounterStatus], to_status: Union[str, EncounterStatus]
) -> EncounterStatus:
    """Raise InvalidTransitionError unless from -> to is in the table."""
    target = parse_encounter_status(to_status)
    try:
        current = EncounterStatus(from_status)
    except ValueError:
        raise InvalidTransitionError(str(from_status), target.value)
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target


def find_status_operation(operations: List[PatchOperation]) -> Optional[PatchOperation]:
    return next((op for op in operations if op.path == "/status"), None)


def period_stamp_operations(
    encounter: Encounter, status: EncounterStatus, now: Optional[datetime] = None
) -> List[PatchOperation]:
    """JSON-Patch ops stamping period.start / period.end for the new status, if missing."""
    timestamp = (now or datetime.now(timezone.utc)).isoformat().replace("+00:00", "Z")
    period = encounter.period

    if status == EncounterStatus.IN_PROGRESS and not (period and period.start):
        if period is None:
            return [PatchOperation(op="add", path="/period", value={"start": timestamp})]
        return [PatchOperation(op="add", path="/period/start", value=timestamp)]

    if status == EncounterStatus.FINISHED and not (period and period.end):
        if period is None:
            return [PatchOperation(op="add", path="/period", value={"end": timestamp})]
        return [PatchOperation(op="add", path="/period/end", value=timestamp)]

    return []


async def transition_encounter(
    store: FHIRStore,
    encounter_id: str,
    operations: List[PatchOperation],
    now: Optional[datetime] = None,
) -> Encounter:
    """Forward a JSON-Patch to Encounter/<id>, guarding any status change.

    Raises:
        InvalidStatusError: the requested status is not an encounter status.
        InvalidTransitionError: the table does not allow current -> requested.
    """
    status_op = find_status_operation(operations)
    target = None
    if status_op is not None:
        target = parse_encounter_status(status_op.value)
        current = await store.get_encounter(encounter_id)
        validate_transition(current.status, target)
        logger.info("Encounter/%s: %s → %s", encounter_id, current.status, target.value)

    updated = await store.patch_encounter(encounter_id, operations)
    if target is None:
        return updated

    stamp = period_stamp_operations(updated, target, now=now)
    if not stamp:
        return updated
    try:
        return await store.patch_encounter(encounter_id, stamp)
    except FHIRStoreError as e:
        logger.warning("Failed to stamp period on Encounter/%s: %s", encounter_id, e)
        return updated


# ==================== Encounter creation ====================

ENCOUNTER_READY_APPOINTMENT_STATUSES = {"booked", "arrived"}
ENCOUNTER_INITIAL_STATUSES = {EncounterStatus.PLANNED, EncounterStatus.IN_PROGRESS}

ACT_CODE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ActCode"


class EncounterExistsError(ValueError):
    def __init__(self, appointment_id: str, encounter_id: Optional[str]):
        super().__init__(f"Encounter/{encounter_id} already exists for Appointment/{appointment_id}")
        self.appointment_id = appointment_id
        self.encounter_id = encounter_id


async def create_encounter_for_appointment(
    store: FHIRStore,
    appointment_id: str,
    initial_status: Union[str, EncounterStatus] = INITIAL_ENCOUNTER_STATUS,
) -> Encounter:
    """Open an ambulatory encounter for a booked or arrived appointment.

    Raises:
        InvalidStatusError: initial status is not planned or in-progress.
        EncounterExistsError: an encounter already references the appointment.
        ValueError: the appointment is not ready or lacks participants.
    """
    status = parse_encounter_status(initial_status)
    if status not in ENCOUNTER_INITIAL_STATUSES:
        raise InvalidStatusError(f"Invalid initial status: {status.value}")

    appointment = await store.get_appointment(appointment_id)
    if appointment.status not in ENCOUNTER_READY_APPOINTMENT_STATUSES:
        raise ValueError(
            f"Appointment must be booked or arrived to start an encounter (status: {appointment.status})"
        )

    existing = await store.search_encounters(appointment_id)
    if existing:
        raise EncounterExistsError(appointment_id, existing[0].id)

    patient = appointment.participant_reference("Patient")
    practitioner = appointment.participant_reference("Practitioner")
    if patient is None or practitioner is None:
        raise ValueError("Appointment must have both a patient and a practitioner participant")

    resource = {
        "resourceType": "Encounter",
        "status": status.value,
        "class": {"system": ACT_CODE_SYSTEM, "code": "AMB", "display": "ambulatory"},
        "subject": patient.model_dump(exclude_none=True),
        "participant": [{"individual": practitioner.model_dump(exclude_none=True)}],
        "appointment": [{"reference": f"Appointment/{appointment_id}"}],
    }
    if appointment.start or appointment.end:
        resource["period"] = appointment.model_dump(mode="json", include={"start", "end"}, exclude_none=True)
    if appointment.description:
        resource["reasonCode"] = [{"text": appointment.description}]

    encounter = await store.create_encounter(resource)
    logger.info("Created Encounter/%s (%s) for Appointment/%s", encounter.id, status.value, appointment_id)
    return encounter
