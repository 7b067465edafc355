"""
HTTP implementation of the FHIR store.

Every call carries the caller's bearer credential and the configured
timeout. Non-2xx responses become FHIRStoreError; transport failures and
timeouts become FHIRStoreUnavailableError.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import httpx

from booking_engine.services.fhir.errors import (
    FHIRNotFoundError,
    FHIRStoreError,
    FHIRStoreUnavailableError,
)
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.models import (
    Appointment,
    Encounter,
    PatchOperation,
    Schedule,
    Slot,
)

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"
JSON_PATCH = "application/json-patch+json"

# Upper bound on followed `next` links for a single search
MAX_SEARCH_PAGES = 20


class HttpFHIRStore(FHIRStore):
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        token: str,
        timeout: float = 10.0,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.token = token.strip()
        self.timeout = timeout

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        json: Optional[object] = None,
        content_type: Optional[str] = None,
    ) -> httpx.Response:
        url = path if path.startswith("http") else f"{self.base_url}/{path}"
        headers = {"Accept": FHIR_JSON}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if json is not None:
            headers["Content-Type"] = content_type or FHIR_JSON
            headers["Prefer"] = "return=representation"

        try:
            response = await self.client.request(
                method, url, params=params, json=json, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.warning("FHIR %s %s timed out", method, url)
            raise FHIRStoreUnavailableError(f"FHIR {method} {path} timed out", details=str(e))
        except httpx.TransportError as e:
            logger.error("FHIR %s %s failed: %s", method, url, e)
            raise FHIRStoreUnavailableError(f"FHIR server unreachable: {e}", details=str(e))

        if response.status_code >= 400:
            details = response.text
            logger.error("FHIR API error: %s %s -> %s", method, url, response.status_code)
            message = f"FHIR API error: {response.status_code} {response.reason_phrase}"
            if response.status_code == 404:
                raise FHIRNotFoundError(message, details=details)
            raise FHIRStoreError(message, status_code=response.status_code, details=details)

        return response

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        return self._decode(await self._send(method, path, **kwargs))

    @staticmethod
    def _decode(response: httpx.Response) -> dict:
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _location_id(response: httpx.Response, resource_type: str) -> Optional[str]:
        """Logical id from a `Location: [base]/Type/id/_history/vid` header."""
        location = response.headers.get("Location") or response.headers.get("Content-Location")
        if not location:
            return None
        parts = httpx.URL(location).path.strip("/").split("/")
        if resource_type in parts:
            index = parts.index(resource_type)
            if index + 1 < len(parts):
                return parts[index + 1]
        return None

    async def _write(
        self,
        method: str,
        path: str,
        resource_type: str,
        body: object,
        content_type: Optional[str] = None,
    ) -> dict:
        """Write, then read the resource back if the server answered without it."""
        response = await self._send(method, path, json=body, content_type=content_type)
        data = self._decode(response)
        if data.get("resourceType") == resource_type:
            return data

        resource_id = self._location_id(response, resource_type)
        if resource_id is None and "/" in path:
            resource_id = path.split("/", 1)[1]
        if resource_id is None:
            logger.warning("FHIR %s %s returned neither a resource nor a Location", method, path)
            return dict(body)

        try:
            return await self._request("GET", f"{resource_type}/{resource_id}")
        except FHIRStoreError as e:
            logger.warning("Could not read back %s/%s after %s: %s", resource_type, resource_id, method, e)
            if isinstance(body, dict):
                return dict(body, id=resource_id)
            raise

    async def _search(self, resource_type: str, params: List[Tuple[str, str]]) -> List[dict]:
        """Run a search and follow `next` links, returning the entry resources."""
        resources: List[dict] = []
        bundle = await self._request("GET", resource_type, params=params)
        for _ in range(MAX_SEARCH_PAGES):
            resources.extend(
                entry["resource"] for entry in bundle.get("entry", []) if "resource" in entry
            )
            next_url = next(
                (link.get("url") for link in bundle.get("link", []) if link.get("relation") == "next"),
                None,
            )
            if not next_url:
                break
            bundle = await self._request("GET", next_url)
        else:
            logger.warning("%s search truncated after %d pages", resource_type, MAX_SEARCH_PAGES)
        return resources

    @staticmethod
    def _patch_body(operations: List[PatchOperation]) -> list:
        return [op.to_json() for op in operations]

    # ==================== Schedules ====================

    async def get_schedule(self, schedule_id: str) -> Schedule:
        return Schedule.model_validate(await self._request("GET", f"Schedule/{schedule_id}"))

    async def search_schedules(self, actor: str) -> List[Schedule]:
        resources = await self._search("Schedule", [("actor", actor), ("_count", "100")])
        return [Schedule.model_validate(r) for r in resources]

    # ==================== Slots ====================

    async def search_slots(
        self,
        schedule_ids: Iterable[str],
        start_ge: datetime,
        start_lt: datetime,
        count: int = 1000,
    ) -> List[Slot]:
        params = [
            ("schedule", ",".join(f"Schedule/{sid}" for sid in schedule_ids)),
            ("start", f"ge{start_ge.isoformat()}"),
            ("start", f"lt{start_lt.isoformat()}"),
            ("_count", str(count)),
        ]
        resources = await self._search("Slot", params)
        return [Slot.model_validate(r) for r in resources]

    async def get_slot(self, slot_id: str) -> Slot:
        return Slot.model_validate(await self._request("GET", f"Slot/{slot_id}"))

    async def create_slot(self, resource: dict) -> Slot:
        return Slot.model_validate(await self._write("POST", "Slot", "Slot", resource))

    async def patch_slot(self, slot_id: str, operations: List[PatchOperation]) -> Slot:
        data = await self._write(
            "PATCH", f"Slot/{slot_id}", "Slot", self._patch_body(operations), content_type=JSON_PATCH
        )
        return Slot.model_validate(data)

    # ==================== Appointments ====================

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return Appointment.model_validate(
            await self._request("GET", f"Appointment/{appointment_id}")
        )

    async def create_appointment(self, resource: dict) -> Appointment:
        return Appointment.model_validate(
            await self._write("POST", "Appointment", "Appointment", resource)
        )

    async def patch_appointment(
        self, appointment_id: str, operations: List[PatchOperation]
    ) -> Appointment:
        data = await self._write(
            "PATCH",
            f"Appointment/{appointment_id}",
            "Appointment",
            self._patch_body(operations),
            content_type=JSON_PATCH,
        )
        return Appointment.model_validate(data)

    async def update_appointment(self, appointment_id: str, resource: dict) -> Appointment:
        return Appointment.model_validate(
            await self._write("PUT", f"Appointment/{appointment_id}", "Appointment", resource)
        )

    # ==================== Encounters ====================

    async def get_encounter(self, encounter_id: str) -> Encounter:
        return Encounter.model_validate(await self._request("GET", f"Encounter/{encounter_id}"))

    async def search_encounters(self, appointment_id: str) -> List[Encounter]:
        resources = await self._search(
            "Encounter", [("appointment", f"Appointment/{appointment_id}"), ("_count", "1")]
        )
        return [Encounter.model_validate(r) for r in resources]

    async def create_encounter(self, resource: dict) -> Encounter:
        return Encounter.model_validate(
            await self._write("POST", "Encounter", "Encounter", resource)
        )

    async def patch_encounter(
        self, encounter_id: str, operations: List[PatchOperation]
    ) -> Encounter:
        data = await self._write(
            "PATCH",
            f"Encounter/{encounter_id}",
            "Encounter",
            self._patch_body(operations),
            content_type=JSON_PATCH,
        )
        return Encounter.model_validate(data)

    # ==================== Communications ====================

    async def create_communication(self, resource: dict) -> dict:
        return await self._write("POST", "Communication", "Communication", resource)

    async def ping(self) -> Optional[str]:
        metadata = await self._request("GET", "metadata")
        return metadata.get("fhirVersion")
