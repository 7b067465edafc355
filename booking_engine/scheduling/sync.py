"""
Slot Status Synchronizer.

After an appointment write changes its status, every slot it references
is moved to the derived status. This is a best-effort side effect: the
appointment write has already succeeded, so failures are logged and
reported in the result, never raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from booking_engine.scheduling.status import derive_slot_status
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import Appointment, status_patch

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    slot_ids: List[str] = field(default_factory=list)
    derived_status: Optional[str] = None
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: bool = False


def extract_slot_ids(appointment: Appointment) -> List[str]:
    """Slot ids from `appointment.slot` and Slot-typed extension references, deduplicated."""
    references = list(appointment.slot)
    references.extend(ext.valueReference for ext in appointment.extension if ext.valueReference)

    slot_ids: List[str] = []
    for reference in references:
        slot_id = reference.id_for("Slot")
        if slot_id and slot_id not in slot_ids:
            slot_ids.append(slot_id)
    return slot_ids


async def _sync_one(store: FHIRStore, slot_id: str, derived: str) -> bool:
    """Patch one slot if needed. Returns True if a write was issued."""
    slot = await store.get_slot(slot_id)
    if slot.status == derived:
        return False
    await store.patch_slot(slot_id, status_patch(derived))
    return True


async def sync_slot_status(
    store: FHIRStore,
    appointment: Appointment,
    old_status: Optional[str],
    new_status: Optional[str],
) -> SyncResult:
    slot_ids = extract_slot_ids(appointment)
    result = SyncResult(slot_ids=slot_ids)

    if new_status is None or old_status == new_status:
        result.skipped = True
        return result
    if not slot_ids:
        logger.debug("Appointment/%s references no slots", appointment.id)
        result.skipped = True
        return result

    derived = derive_slot_status(new_status).value
    result.derived_status = derived
    if old_status is not None:
        logger.info(
            "Appointment/%s %s -> %s: slots %s -> %s",
            appointment.id, old_status, new_status, derive_slot_status(old_status).value, derived,
        )

    outcomes = await asyncio.gather(
        *(_sync_one(store, slot_id, derived) for slot_id in slot_ids),
        return_exceptions=True,
    )
    for slot_id, outcome in zip(slot_ids, outcomes):
        if isinstance(outcome, BaseException):
            logger.warning("Failed to set Slot/%s to %s: %s", slot_id, derived, outcome)
            result.failed[slot_id] = str(outcome) or type(outcome).__name__
        elif outcome:
            result.updated.append(slot_id)
        else:
            result.unchanged.append(slot_id)

    return result
