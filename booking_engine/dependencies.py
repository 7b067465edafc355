"""FastAPI dependency injection providers."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from redis.asyncio import Redis

from booking_engine.config import settings
from booking_engine.scheduling.locks import PractitionerLock
from booking_engine.services.fhir.factory import get_fhir_store as build_fhir_store
from booking_engine.services.fhir.interface import FHIRStore


async def get_redis(request: Request) -> Optional[Redis]:
    """Get Redis client from application state.

    Usage:
        @app.get("/example")
        async def example(redis: Redis = Depends(get_redis)):
            await redis.get("key")
    """
    return getattr(request.app.state, "redis", None)


def get_upstream_token(request: Request) -> str:
    """Bearer credential forwarded to the FHIR server.

    Raises:
        HTTPException: 401 if the Authorization header is missing or not Bearer.
    """
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token for the FHIR server")
    return token.strip()


def get_fhir_store(request: Request) -> FHIRStore:
    """In-memory store from application state, or an HTTP store for this caller."""
    store = getattr(request.app.state, "fhir_store", None)
    if store is not None:
        return store
    return build_fhir_store(request.app.state.http_client, get_upstream_token(request))


def get_practitioner_lock(
    redis: Optional[Redis] = Depends(get_redis),
) -> Optional[PractitionerLock]:
    if not settings.practitioner_lock_enabled:
        return None
    return PractitionerLock(redis)
