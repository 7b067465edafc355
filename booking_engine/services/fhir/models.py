"""
FHIR R4 compatible Pydantic models for the scheduling resources.
Lightweight implementation to avoid heavy dependency overhead.

Resources allow extra fields so anything the upstream server returns
round-trips untouched.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict


class SlotStatus(str, Enum):
    FREE = "free"
    BUSY = "busy"
    BUSY_UNAVAILABLE = "busy-unavailable"
    BUSY_TENTATIVE = "busy-tentative"
    ENTERED_IN_ERROR = "entered-in-error"


class AppointmentStatus(str, Enum):
    PROPOSED = "proposed"
    PENDING = "pending"
    BOOKED = "booked"
    ARRIVED = "arrived"
    CHECKED_IN = "checked-in"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    NOSHOW = "noshow"
    WAITLIST = "waitlist"
    ENTERED_IN_ERROR = "entered-in-error"


class EncounterStatus(str, Enum):
    PLANNED = "planned"
    ARRIVED = "arrived"
    TRIAGED = "triaged"
    IN_PROGRESS = "in-progress"
    ONLEAVE = "onleave"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    ENTERED_IN_ERROR = "entered-in-error"
    UNKNOWN = "unknown"


class Reference(BaseModel):
    model_config = ConfigDict(extra="allow")

    reference: Optional[str] = None
    display: Optional[str] = None

    def id_for(self, resource_type: str) -> Optional[str]:
        """Return the logical id if this references `resource_type`, else None."""
        prefix = f"{resource_type}/"
        if self.reference and self.reference.startswith(prefix):
            return self.reference[len(prefix):]
        return None


class Period(BaseModel):
    model_config = ConfigDict(extra="allow")

    start: Optional[datetime] = None
    end: Optional[datetime] = None


class FHIRResource(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    resourceType: str
    id: Optional[str] = None

    def to_fhir(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True, by_alias=True)


class Schedule(FHIRResource):
    resourceType: str = "Schedule"
    active: Optional[bool] = None
    actor: List[Reference] = []
    planningHorizon: Optional[Period] = None

    @property
    def practitioner_id(self) -> Optional[str]:
        for actor in self.actor:
            practitioner_id = actor.id_for("Practitioner")
            if practitioner_id:
                return practitioner_id
        return None


class Slot(FHIRResource):
    resourceType: str = "Slot"
    schedule: Reference
    status: str  # busy | free | busy-unavailable | busy-tentative | entered-in-error
    start: datetime
    end: datetime
    comment: Optional[str] = None

    @property
    def schedule_id(self) -> str:
        return self.schedule.id_for("Schedule") or self.schedule.reference or ""


class AppointmentParticipant(BaseModel):
    model_config = ConfigDict(extra="allow")

    actor: Optional[Reference] = None
    status: Optional[str] = None  # accepted | declined | tentative | needs-action


class Extension(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: Optional[str] = None
    valueReference: Optional[Reference] = None


class Appointment(FHIRResource):
    resourceType: str = "Appointment"
    status: Optional[str] = None
    slot: List[Reference] = []
    participant: List[AppointmentParticipant] = []
    extension: List[Extension] = []
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    description: Optional[str] = None

    def participant_reference(self, resource_type: str) -> Optional[Reference]:
        """First participant actor referencing `resource_type` (Patient, Practitioner)."""
        for participant in self.participant:
            if participant.actor and participant.actor.id_for(resource_type):
                return participant.actor
        return None


class Encounter(FHIRResource):
    resourceType: str = "Encounter"
    status: str
    appointment: List[Reference] = []
    period: Optional[Period] = None


class PatchOperation(BaseModel):
    """A single JSON-Patch (RFC 6902) operation."""

    op: str
    path: str
    value: Optional[Any] = None

    def to_json(self) -> dict:
        data = {"op": self.op, "path": self.path}
        if self.op != "remove":
            data["value"] = self.value
        return data


def status_patch(status: str) -> List[PatchOperation]:
    """The targeted status-only patch used for slot updates."""
    return [PatchOperation(op="replace", path="/status", value=status)]
