from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from booking_engine.services.fhir.models import (
    Appointment,
    Encounter,
    PatchOperation,
    Schedule,
    Slot,
)


class FHIRStore(ABC):
    """Abstract interface for the upstream FHIR server.

    The store is the system of record; implementations hold no state
    beyond what a single request needs.
    """

    # ==================== Schedules ====================

    @abstractmethod
    async def get_schedule(self, schedule_id: str) -> Schedule:
        """GET Schedule/<id>. Raises FHIRNotFoundError if missing."""
        pass

    @abstractmethod
    async def search_schedules(self, actor: str) -> List[Schedule]:
        """GET Schedule?actor=<reference>."""
        pass

    # ==================== Slots ====================

    @abstractmethod
    async def search_slots(
        self,
        schedule_ids: Iterable[str],
        start_ge: datetime,
        start_lt: datetime,
        count: int = 1000,
    ) -> List[Slot]:
        """
        GET Slot?schedule=<ids>&start=ge<t1>&start=lt<t2>.
        One wide query covering every schedule in the set.
        """
        pass

    @abstractmethod
    async def get_slot(self, slot_id: str) -> Slot:
        pass

    @abstractmethod
    async def create_slot(self, resource: dict) -> Slot:
        """POST Slot."""
        pass

    @abstractmethod
    async def patch_slot(self, slot_id: str, operations: List[PatchOperation]) -> Slot:
        """PATCH Slot/<id> with JSON-Patch operations."""
        pass

    # ==================== Appointments ====================

    @abstractmethod
    async def get_appointment(self, appointment_id: str) -> Appointment:
        pass

    @abstractmethod
    async def create_appointment(self, resource: dict) -> Appointment:
        pass

    @abstractmethod
    async def patch_appointment(
        self, appointment_id: str, operations: List[PatchOperation]
    ) -> Appointment:
        pass

    @abstractmethod
    async def update_appointment(self, appointment_id: str, resource: dict) -> Appointment:
        """PUT Appointment/<id>."""
        pass

    # ==================== Encounters ====================

    @abstractmethod
    async def get_encounter(self, encounter_id: str) -> Encounter:
        pass

    @abstractmethod
    async def search_encounters(self, appointment_id: str) -> List[Encounter]:
        """GET Encounter?appointment=Appointment/<id>."""
        pass

    @abstractmethod
    async def create_encounter(self, resource: dict) -> Encounter:
        pass

    @abstractmethod
    async def patch_encounter(
        self, encounter_id: str, operations: List[PatchOperation]
    ) -> Encounter:
        pass

    # ==================== Communications ====================

    @abstractmethod
    async def create_communication(self, resource: dict) -> dict:
        pass

    @abstractmethod
    async def ping(self) -> Optional[str]:
        """Check the server is reachable. Returns its FHIR version if known."""
        pass
