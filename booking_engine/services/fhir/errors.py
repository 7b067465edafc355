"""Errors raised by FHIR store implementations."""

from typing import Optional


class FHIRStoreError(Exception):
    """The upstream FHIR server rejected a request."""

    def __init__(self, message: str, status_code: int = 502, details: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class FHIRNotFoundError(FHIRStoreError):
    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message, status_code=404, details=details)


class FHIRStoreUnavailableError(FHIRStoreError):
    """Transport failure or timeout talking to the upstream server."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message, status_code=503, details=details)
