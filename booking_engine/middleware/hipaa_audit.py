"""HIPAA audit logging middleware.

Every request to a FHIR resource route is logged as one JSON line on the
`hipaa.audit` logger: who called, which resource, and what came back.
"""

import json
import logging
import time
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger("hipaa.audit")

FHIR_PREFIX = "/api/fhir/"

# Resource types carrying Protected Health Information
PHI_RESOURCES = {"Slot", "Appointment", "Encounter"}


def phi_resource_type(path: str) -> Optional[str]:
    """Resource type for an audited path, or None if the path is not audited."""
    if not path.startswith(FHIR_PREFIX):
        return None
    resource_type = path[len(FHIR_PREFIX):].split("/", 1)[0]
    return resource_type if resource_type in PHI_RESOURCES else None


def _mask_key(api_key: Optional[str]) -> str:
    if not api_key:
        return "anonymous"
    return f"{api_key[:4]}..." if len(api_key) > 4 else "****"


class HIPAAAuditMiddleware(BaseHTTPMiddleware):
    """Middleware that logs access to PHI endpoints for HIPAA compliance.

    Every request matching a PHI resource route is logged with:
    - event: "phi_access"
    - timestamp: Unix timestamp
    - method: HTTP method
    - path: Request path
    - resource_type: Slot, Appointment or Encounter
    - caller_ip: Client IP address
    - api_key: first characters of the X-API-Key header (or "anonymous")
    - status_code: Response status code
    - duration_ms: Request duration in milliseconds
    """

    def __init__(self, app, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        resource_type = phi_resource_type(request.url.path)
        if self.enabled and resource_type:
            audit_entry = {
                "event": "phi_access",
                "timestamp": time.time(),
                "method": request.method,
                "path": str(request.url.path),
                "resource_type": resource_type,
                "caller_ip": request.client.host if request.client else "unknown",
                "api_key": _mask_key(request.headers.get("X-API-Key")),
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
            logger.info(json.dumps(audit_entry))

        return response
