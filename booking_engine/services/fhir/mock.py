import copy
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from faker import Faker

from booking_engine.services.fhir.errors import FHIRNotFoundError, FHIRStoreError
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import (
    Appointment,
    Encounter,
    PatchOperation,
    Schedule,
    Slot,
)

fake = Faker()


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def apply_json_patch(resource: dict, operations: List[PatchOperation]) -> dict:
    """Apply add/replace/remove operations with object paths (no array indices)."""
    patched = copy.deepcopy(resource)
    for op in operations:
        parts = [p for p in op.path.split("/") if p]
        if not parts:
            raise FHIRStoreError(f"Invalid patch path: {op.path!r}", status_code=422)
        target = patched
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                raise FHIRStoreError(f"Patch path not found: {op.path}", status_code=422)
            target = target[part]
        key = parts[-1]
        if op.op in ("add", "replace"):
            if op.op == "replace" and key not in target:
                raise FHIRStoreError(f"Cannot replace missing path: {op.path}", status_code=422)
            target[key] = op.value
        elif op.op == "remove":
            target.pop(key, None)
        else:
            raise FHIRStoreError(f"Unsupported patch op: {op.op}", status_code=422)
    return patched


class MockFHIRStore(FHIRStore):
    """In-memory FHIR store for local development and tests.

    Resources are kept as FHIR JSON dicts keyed by (resourceType, id).
    Every write is appended to `writes` so callers can assert on traffic.
    """

    def __init__(self, seed: bool = True):
        self.resources: Dict[Tuple[str, str], dict] = {}
        self.writes: List[Tuple[str, str]] = []
        self.practitioner_ids: List[str] = []

        if seed:
            self._seed_data()

    def _seed_data(self):
        # Practitioners, each with a clinic and a telehealth schedule
        for _ in range(3):
            practitioner_id = str(uuid.uuid4())
            self.add_resource({
                "resourceType": "Practitioner",
                "id": practitioner_id,
                "name": [{"family": fake.last_name(), "given": [fake.first_name()], "use": "official"}],
                "telecom": [{"system": "email", "value": fake.email()}],
            })
            self.practitioner_ids.append(practitioner_id)
            clinic = self.add_schedule(practitioner_id, comment="Clinic")
            self.add_schedule(practitioner_id, comment="Telehealth")

            # Morning slots on the clinic schedule for the next 10 weekdays
            today = date.today()
            for day_offset in range(1, 15):
                current_date = today + timedelta(days=day_offset)
                if current_date.weekday() >= 5:  # Skip weekends
                    continue
                start = datetime.combine(current_date, time(9, 0), tzinfo=timezone.utc)
                while start.hour < 12:
                    end = start + timedelta(minutes=30)
                    self.add_slot(clinic["id"], start, end)
                    start = end

    # ==================== Seeding helpers ====================

    def add_resource(self, resource: dict) -> dict:
        resource = copy.deepcopy(resource)
        resource.setdefault("id", str(uuid.uuid4()))
        self.resources[(resource["resourceType"], resource["id"])] = resource
        return resource

    def add_schedule(self, practitioner_id: Optional[str], **fields) -> dict:
        actor = [{"reference": f"Practitioner/{practitioner_id}"}] if practitioner_id else []
        return self.add_resource({"resourceType": "Schedule", "active": True, "actor": actor, **fields})

    def add_slot(self, schedule_id: str, start: datetime, end: datetime, status: str = "free") -> dict:
        return self.add_resource({
            "resourceType": "Slot",
            "schedule": {"reference": f"Schedule/{schedule_id}"},
            "status": status,
            "start": _iso(start),
            "end": _iso(end),
        })

    def _get(self, resource_type: str, resource_id: str) -> dict:
        try:
            return copy.deepcopy(self.resources[(resource_type, resource_id)])
        except KeyError:
            raise FHIRNotFoundError(f"{resource_type}/{resource_id} not found")

    def _of_type(self, resource_type: str) -> List[dict]:
        return [copy.deepcopy(r) for (rtype, _), r in self.resources.items() if rtype == resource_type]

    def _create(self, resource_type: str, resource: dict) -> dict:
        if resource.get("resourceType", resource_type) != resource_type:
            raise FHIRStoreError(f"Expected resourceType {resource_type}", status_code=400)
        resource = dict(resource, resourceType=resource_type, id=str(uuid.uuid4()))
        self.writes.append(("POST", resource_type))
        return self.add_resource(resource)

    def _patch(self, resource_type: str, resource_id: str, operations: List[PatchOperation]) -> dict:
        patched = apply_json_patch(self._get(resource_type, resource_id), operations)
        self.writes.append(("PATCH", f"{resource_type}/{resource_id}"))
        self.resources[(resource_type, resource_id)] = patched
        return copy.deepcopy(patched)

    # ==================== Schedules ====================

    async def get_schedule(self, schedule_id: str) -> Schedule:
        return Schedule.model_validate(self._get("Schedule", schedule_id))

    async def search_schedules(self, actor: str) -> List[Schedule]:
        return [
            Schedule.model_validate(s)
            for s in self._of_type("Schedule")
            if any(a.get("reference") == actor for a in s.get("actor", []))
        ]

    # ==================== Slots ====================

    async def search_slots(
        self,
        schedule_ids: Iterable[str],
        start_ge: datetime,
        start_lt: datetime,
        count: int = 1000,
    ) -> List[Slot]:
        references = {f"Schedule/{sid}" for sid in schedule_ids}
        matches = [
            s for s in self._of_type("Slot")
            if s["schedule"].get("reference") in references
            and start_ge <= _parse(s["start"]) < start_lt
        ]
        matches.sort(key=lambda s: _parse(s["start"]))
        return [Slot.model_validate(s) for s in matches[:count]]

    async def get_slot(self, slot_id: str) -> Slot:
        return Slot.model_validate(self._get("Slot", slot_id))

    async def create_slot(self, resource: dict) -> Slot:
        return Slot.model_validate(self._create("Slot", resource))

    async def patch_slot(self, slot_id: str, operations: List[PatchOperation]) -> Slot:
        return Slot.model_validate(self._patch("Slot", slot_id, operations))

    # ==================== Appointments ====================

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return Appointment.model_validate(self._get("Appointment", appointment_id))

    async def create_appointment(self, resource: dict) -> Appointment:
        return Appointment.model_validate(self._create("Appointment", resource))

    async def patch_appointment(
        self, appointment_id: str, operations: List[PatchOperation]
    ) -> Appointment:
        return Appointment.model_validate(self._patch("Appointment", appointment_id, operations))

    async def update_appointment(self, appointment_id: str, resource: dict) -> Appointment:
        self._get("Appointment", appointment_id)
        resource = dict(resource, resourceType="Appointment", id=appointment_id)
        self.writes.append(("PUT", f"Appointment/{appointment_id}"))
        return Appointment.model_validate(self.add_resource(resource))

    # ==================== Encounters ====================

    async def get_encounter(self, encounter_id: str) -> Encounter:
        return Encounter.model_validate(self._get("Encounter", encounter_id))

    async def search_encounters(self, appointment_id: str) -> List[Encounter]:
        reference = f"Appointment/{appointment_id}"
        return [
            Encounter.model_validate(e)
            for e in self._of_type("Encounter")
            if any(a.get("reference") == reference for a in e.get("appointment", []))
        ]

    async def create_encounter(self, resource: dict) -> Encounter:
        return Encounter.model_validate(self._create("Encounter", resource))

    async def patch_encounter(
        self, encounter_id: str, operations: List[PatchOperation]
    ) -> Encounter:
        return Encounter.model_validate(self._patch("Encounter", encounter_id, operations))

    # ==================== Communications ====================

    async def create_communication(self, resource: dict) -> dict:
        return self._create("Communication", resource)

    async def ping(self) -> Optional[str]:
        return "4.0.1"
