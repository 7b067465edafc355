"""
Status Derivation Function: appointment status -> required slot status.

Unrecognized statuses derive `busy`. Over-blocking a slot is recoverable;
freeing one that is still held is a double booking.
"""

import logging
from typing import Optional, Union

from booking_engine.services.fhir.models import AppointmentStatus, SlotStatus

logger = logging.getLogger(__name__)


SLOT_STATUS_BY_APPOINTMENT_STATUS = {
    AppointmentStatus.PENDING: SlotStatus.BUSY,
    AppointmentStatus.BOOKED: SlotStatus.BUSY,
    AppointmentStatus.ARRIVED: SlotStatus.BUSY,
    AppointmentStatus.CHECKED_IN: SlotStatus.BUSY,
    AppointmentStatus.FULFILLED: SlotStatus.BUSY,
    AppointmentStatus.PROPOSED: SlotStatus.BUSY_TENTATIVE,
    AppointmentStatus.CANCELLED: SlotStatus.FREE,
    AppointmentStatus.NOSHOW: SlotStatus.FREE,
    AppointmentStatus.WAITLIST: SlotStatus.FREE,
    AppointmentStatus.ENTERED_IN_ERROR: SlotStatus.ENTERED_IN_ERROR,
}

FAIL_SAFE_SLOT_STATUS = SlotStatus.BUSY

_missing = set(AppointmentStatus) - set(SLOT_STATUS_BY_APPOINTMENT_STATUS)
if _missing:
    raise RuntimeError(
        f"No slot status mapped for appointment statuses: {sorted(s.value for s in _missing)}"
    )


def parse_appointment_status(status: Union[str, AppointmentStatus, None]) -> Optional[AppointmentStatus]:
    if isinstance(status, AppointmentStatus):
        return status
    try:
        return AppointmentStatus(status)
    except ValueError:
        return None


def derive_slot_status(appointment_status: Union[str, AppointmentStatus, None]) -> SlotStatus:
    parsed = parse_appointment_status(appointment_status)
    if parsed is None:
        logger.warning(
            "Unrecognized appointment status %r; holding slot as %s",
            appointment_status, FAIL_SAFE_SLOT_STATUS.value,
        )
        return FAIL_SAFE_SLOT_STATUS
    return SLOT_STATUS_BY_APPOINTMENT_STATUS[parsed]
