"""Tests for HIPAA audit and auth middleware."""

import json
import logging

import pytest

from booking_engine.main import app
from booking_engine.middleware.hipaa_audit import phi_resource_type


@pytest.mark.asyncio
async def test_hipaa_audit_logs_phi_access(client, auth_headers, caplog):
    """HIPAA middleware logs access to FHIR resource paths."""
    with caplog.at_level(logging.INFO, logger="hipaa.audit"):
        await client.get("/api/fhir/Appointment/123", headers=auth_headers)

    audit_logs = [r for r in caplog.records if r.name == "hipaa.audit"]
    assert len(audit_logs) == 1

    entry = json.loads(audit_logs[0].message)
    assert entry["event"] == "phi_access"
    assert entry["method"] == "GET"
    assert entry["path"] == "/api/fhir/Appointment/123"
    assert entry["resource_type"] == "Appointment"
    assert entry["status_code"] == 404
    assert "timestamp" in entry
    assert "duration_ms" in entry
    assert "caller_ip" in entry
    # The full key is never written to the audit trail
    assert auth_headers["X-API-Key"] not in audit_logs[0].message


@pytest.mark.asyncio
async def test_hipaa_audit_logs_rejected_requests(client, caplog):
    with caplog.at_level(logging.INFO, logger="hipaa.audit"):
        await client.get("/api/fhir/Encounter/123")

    entry = json.loads([r for r in caplog.records if r.name == "hipaa.audit"][0].message)
    assert entry["status_code"] == 401
    assert entry["api_key"] == "anonymous"


@pytest.mark.asyncio
async def test_hipaa_audit_skips_non_phi_paths(client, caplog):
    """HIPAA middleware does NOT log access to non-PHI paths."""
    with caplog.at_level(logging.INFO, logger="hipaa.audit"):
        await client.get("/health")

    audit_logs = [r for r in caplog.records if r.name == "hipaa.audit"]
    assert len(audit_logs) == 0


@pytest.mark.asyncio
async def test_auth_rejects_no_key(client):
    response = await client.get("/api/fhir/Slot/abc")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_auth_rejects_invalid_key(client):
    response = await client.get("/api/fhir/Slot/abc", headers={"X-API-Key": "wrong-key"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Missing or invalid X-API-Key header for the booking API"
    assert response.headers["WWW-Authenticate"] == "APIKey"


@pytest.mark.asyncio
async def test_auth_rejects_non_ascii_key(client):
    response = await client.get("/api/fhir/Slot/abc", headers={"X-API-Key": "cl\u00e9".encode("latin-1")})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_upstream_token_required_for_http_store(client, auth_headers):
    app.state.fhir_store = None
    response = await client.get("/api/fhir/Slot/abc", headers=auth_headers)
    assert response.status_code == 401
    assert "bearer token" in response.json()["detail"]


def test_phi_resource_type():
    assert phi_resource_type("/api/fhir/Slot/batch") == "Slot"
    assert phi_resource_type("/api/fhir/Encounter/create-for-appointment") == "Encounter"
    assert phi_resource_type("/api/fhir/metadata") is None
    assert phi_resource_type("/health") is None
