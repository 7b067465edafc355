"""Caller authentication for the booking routes.

Every router mounted under /api/fhir depends on `verify_api_key`. The key
only identifies the calling application; the FHIR server credential travels
separately as a Bearer token (see `dependencies.get_upstream_token`).
"""

import secrets

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from booking_engine.config import settings


api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,
    description="Booking engine key for the calling application",
)


async def verify_api_key(
    api_key: str | None = Security(api_key_header),
) -> str:
    """Reject requests whose X-API-Key does not match `settings.api_key` with 401."""
    if not api_key or not secrets.compare_digest(api_key.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid X-API-Key header for the booking API",
            headers={"WWW-Authenticate": "APIKey"},
        )
    return api_key
