"""Health check endpoints.

Provides basic and detailed health checks for service monitoring.
"""

import time

from fastapi import APIRouter, Request

from booking_engine.services.fhir.errors import FHIRStoreError
from booking_engine.services.fhir.factory import get_fhir_store


router = APIRouter(tags=["health"])

VERSION = "0.1.0"


def _health_store(request: Request):
    store = getattr(request.app.state, "fhir_store", None)
    if store is not None:
        return store
    return get_fhir_store(request.app.state.http_client)


@router.get("")
async def health(request: Request):
    """Basic health check with Redis status."""
    try:
        await request.app.state.redis.ping()
        redis_status = "connected"
    except Exception:
        redis_status = "disconnected"

    return {
        "status": "ok",
        "redis": redis_status,
        "version": VERSION,
    }


@router.get("/detailed")
async def health_detailed(request: Request):
    """Detailed health check with per-service status and latency."""
    services = {
        "api": {"status": "running"},
    }
    overall_status = "ok"

    # Check Redis
    try:
        start = time.time()
        await request.app.state.redis.ping()
        latency_ms = round((time.time() - start) * 1000, 2)
        services["redis"] = {"status": "connected", "latency_ms": latency_ms}
    except Exception:
        services["redis"] = {"status": "disconnected"}
        overall_status = "degraded"

    # Check the FHIR server (CapabilityStatement)
    try:
        start = time.time()
        fhir_version = await _health_store(request).ping()
        latency_ms = round((time.time() - start) * 1000, 2)
        services["fhir"] = {
            "status": "connected",
            "fhir_version": fhir_version,
            "latency_ms": latency_ms,
        }
    except FHIRStoreError as e:
        services["fhir"] = {"status": "disconnected", "error": str(e)}
        overall_status = "degraded"

    return {
        "status": overall_status,
        "version": VERSION,
        "services": services,
    }
