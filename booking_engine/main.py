"""FHIR Booking Engine: main application entry point.

Creates FastAPI app with:
- Redis connection lifecycle (practitioner locks)
- Shared httpx client for the upstream FHIR server
- HIPAA audit logging middleware
- CORS middleware
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from booking_engine.config import settings
from booking_engine.middleware.auth import verify_api_key
from booking_engine.middleware.hipaa_audit import HIPAAAuditMiddleware
from booking_engine.routers import appointments, encounters, health, slots
from booking_engine.services.fhir.errors import FHIRStoreError
from booking_engine.services.fhir.factory import create_http_client
from booking_engine.services.fhir.mock import MockFHIRStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("booking_engine")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle: Redis and upstream HTTP client."""
    # Startup
    app.state.redis = Redis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    try:
        await app.state.redis.ping()
        logger.info("Redis connected at %s", settings.redis_url)
    except Exception as e:
        logger.warning("Redis connection failed: %s (slot batches will run unlocked)", e)

    app.state.http_client = create_http_client()
    if settings.fhir_store == "mock":
        app.state.fhir_store = MockFHIRStore()
        logger.info("Using in-memory FHIR store")
    else:
        app.state.fhir_store = None
        logger.info("Using FHIR server at %s", settings.fhir_base_url)
    yield

    # Shutdown
    await app.state.http_client.aclose()
    await app.state.redis.close()
    logger.info("Redis disconnected")


app = FastAPI(
    title="FHIR Booking Engine",
    version="0.1.0",
    description="Overlap-safe slot and appointment scheduling over a FHIR R4 server",
    lifespan=lifespan,
)


@app.exception_handler(FHIRStoreError)
async def fhir_store_error_handler(request: Request, exc: FHIRStoreError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc), "details": exc.details},
    )


# Middleware (LIFO order: last added runs first on request)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# HIPAA audit runs first on requests (added after CORS)
app.add_middleware(HIPAAAuditMiddleware, enabled=settings.hipaa_audit_log)


# Routes
fhir_auth = [Security(verify_api_key)]

app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(slots.router, prefix="/api/fhir", dependencies=fhir_auth)
app.include_router(appointments.router, prefix="/api/fhir", dependencies=fhir_auth)
app.include_router(encounters.router, prefix="/api/fhir", dependencies=fhir_auth)


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())
