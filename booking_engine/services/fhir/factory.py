from typing import Optional

import httpx

from booking_engine.config import settings
from booking_engine.services.fhir.client import HttpFHIRStore
from booking_engine.services.fhir.interface import FHIRStore
from booking_engine.services.fhir.mock import MockFHIRStore


def create_http_client() -> httpx.AsyncClient:
    """Shared connection pool for upstream FHIR calls."""
    return httpx.AsyncClient(timeout=httpx.Timeout(settings.fhir_timeout_seconds))


def get_fhir_store(
    client: Optional[httpx.AsyncClient] = None,
    token: Optional[str] = None,
) -> FHIRStore:
    """
    Factory function to return the FHIR store implementation.
    `fhir_store=mock` serves the seeded in-memory store; otherwise calls go
    to `fhir_base_url` with the caller's bearer token.
    """
    if settings.fhir_store == "mock":
        return MockFHIRStore()
    if client is None:
        raise ValueError("An HTTP client is required for the FHIR server store")
    return HttpFHIRStore(
        client,
        settings.fhir_base_url,
        token or "",
        timeout=settings.fhir_timeout_seconds,
    )
