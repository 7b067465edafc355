"""Shared test fixtures for booking engine tests."""

from datetime import date, datetime, time, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from fakeredis import aioredis

from booking_engine.config import settings
from booking_engine.main import app
from booking_engine.services.fhir.mock import MockFHIRStore


def iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


@pytest.fixture
def day() -> datetime:
    """Midnight UTC a few days ahead, so slots built from it are in the future."""
    return datetime.combine(date.today() + timedelta(days=3), time(0, 0), tzinfo=timezone.utc)


@pytest.fixture
def at(day):
    """at(10, 15) -> that day at 10:15 UTC."""
    def _at(hour: int, minute: int = 0) -> datetime:
        return day + timedelta(hours=hour, minutes=minute)
    return _at


@pytest.fixture
def slot_request(at):
    """Raw FHIR Slot body for a batch request."""
    def _slot_request(schedule_id: str, start: tuple, end: tuple, **fields) -> dict:
        return {
            "resourceType": "Slot",
            "schedule": {"reference": f"Schedule/{schedule_id}"},
            "start": iso(at(*start)),
            "end": iso(at(*end)),
            **fields,
        }
    return _slot_request


@pytest.fixture
def store():
    """Empty in-memory store with one practitioner holding two schedules."""
    store = MockFHIRStore(seed=False)
    store.add_resource({"resourceType": "Practitioner", "id": "prac-1"})
    store.add_schedule("prac-1", id="sched-clinic")
    store.add_schedule("prac-1", id="sched-tele")
    store.add_schedule("prac-2", id="sched-other")
    return store


@pytest_asyncio.fixture
async def fake_redis():
    client = aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def client(fake_redis, store):
    """Async HTTP client backed by fakeredis and the in-memory store."""
    app.state.redis = fake_redis
    app.state.fhir_store = store
    app.state.http_client = None
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def valid_api_key():
    """Return the configured API key for authenticated requests."""
    return settings.api_key


@pytest.fixture
def auth_headers(valid_api_key):
    return {"X-API-Key": valid_api_key}
