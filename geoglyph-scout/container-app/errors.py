"""
Error taxonomy for the Geoglyph Scout API.

Every failure raised by the imagery and vision clients derives from
GeoglyphScoutError and carries the HTTP status the request boundary reports.
"""

from typing import Any, Dict, Optional


class GeoglyphScoutError(Exception):
    """Base error; rendered by the API as {"error": ..., "details": ...}."""

    status_code: int = 500
    error: str = "Internal server error"
    retryable: bool = False

    def __init__(self, message: str, *, error: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code

    def to_envelope(self) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {"error": self.error, "details": self.message}
        if self.retryable:
            envelope["retryable"] = True
        return envelope


class ConfigurationError(GeoglyphScoutError):
    """Missing or malformed credentials. Never retried."""

    error = "Service not configured"


class InvalidInputError(GeoglyphScoutError):
    """Missing or out-of-range user input."""

    status_code = 400
    error = "Invalid request"


class DomainError(InvalidInputError):
    """Input is numerically valid but outside the converter's usable domain (near the poles)."""

    error = "Coordinates outside supported domain"


class UpstreamError(GeoglyphScoutError):
    """Non-success response from Earth Engine, the token endpoint or the vision model."""

    def __init__(self, message: str, *, upstream_status: Optional[int] = None, body: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.upstream_status = upstream_status
        self.body = body


class AuthenticationError(UpstreamError):
    """The service-account token exchange was rejected."""

    error = "Authentication with imagery provider failed"


class UpstreamTimeoutError(UpstreamError):
    """The remote service did not answer within the configured timeout."""

    status_code = 504
    error = "Upstream request timed out"
    retryable = True


class DataShapeError(GeoglyphScoutError):
    """Upstream answered successfully but the body is empty or has the wrong shape."""

    error = "Unexpected upstream response"


class NoDataError(DataShapeError):
    """Imagery response carried no image payload."""

    error = "No imagery data returned"


class NoContentError(DataShapeError):
    """Vision model returned no message content."""

    error = "No content returned by vision model"
