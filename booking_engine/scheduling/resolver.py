"""
Practitioner Schedule Resolver.

Overlap checks are practitioner-wide: starting from any one schedule we
find its practitioner, then every schedule that practitioner owns. If the
practitioner cannot be determined the universe degrades to the seed
schedule alone, and the caller carries on.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional

from booking_engine.services.fhir.errors import FHIRStoreError
from booking_engine.services.fhir.interface import FHIRStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleUniverse:
    """The schedule ids an overlap check must cover."""

    seed_schedule_id: str
    schedule_ids: FrozenSet[str]
    practitioner_id: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.practitioner_id is None

    @property
    def lock_key(self) -> str:
        if self.practitioner_id:
            return f"practitioner:{self.practitioner_id}"
        return f"schedule:{self.seed_schedule_id}"

    def __contains__(self, schedule_id: str) -> bool:
        return schedule_id in self.schedule_ids


def fallback_to_single_schedule(seed_schedule_id: str) -> ScheduleUniverse:
    return ScheduleUniverse(
        seed_schedule_id=seed_schedule_id,
        schedule_ids=frozenset({seed_schedule_id}),
    )


async def resolve_practitioner_wide(
    store: FHIRStore, seed_schedule_id: str, practitioner_id: str
) -> ScheduleUniverse:
    schedules = await store.search_schedules(f"Practitioner/{practitioner_id}")
    schedule_ids = {s.id for s in schedules if s.id}
    schedule_ids.add(seed_schedule_id)
    return ScheduleUniverse(
        seed_schedule_id=seed_schedule_id,
        schedule_ids=frozenset(schedule_ids),
        practitioner_id=practitioner_id,
    )


async def resolve_schedule_universe(store: FHIRStore, seed_schedule_id: str) -> ScheduleUniverse:
    """Resolve every schedule belonging to the seed schedule's practitioner."""
    try:
        seed = await store.get_schedule(seed_schedule_id)
    except FHIRStoreError as e:
        logger.warning(
            "Could not read Schedule/%s (%s); checking overlaps against that schedule only",
            seed_schedule_id, e,
        )
        return fallback_to_single_schedule(seed_schedule_id)

    practitioner_id = seed.practitioner_id
    if not practitioner_id:
        logger.warning(
            "Schedule/%s has no practitioner actor; checking overlaps against that schedule only",
            seed_schedule_id,
        )
        return fallback_to_single_schedule(seed_schedule_id)

    try:
        universe = await resolve_practitioner_wide(store, seed_schedule_id, practitioner_id)
    except FHIRStoreError as e:
        logger.warning(
            "Schedule search for Practitioner/%s failed (%s); checking overlaps against Schedule/%s only",
            practitioner_id, e, seed_schedule_id,
        )
        return fallback_to_single_schedule(seed_schedule_id)

    logger.info(
        "Practitioner/%s owns %d schedule(s): %s",
        practitioner_id, len(universe.schedule_ids), ", ".join(sorted(universe.schedule_ids)),
    )
    return universe
