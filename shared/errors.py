"""
Shared error handling for the OIDC trust core.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class TrustCoreException(Exception):
    """Base exception for trust core components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class MissingCredentialsError(TrustCoreException):
    """Caller supplied no usable authentication input."""

    def __init__(self, message: str = "No authentication credentials found", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_CREDENTIALS", message, details)


class InvalidClientError(TrustCoreException):
    """Client is absent or not eligible for the requested operation."""

    def __init__(self, message: str = "Invalid client", details: Optional[Dict[str, Any]] = None, code: str = "INVALID_CLIENT"):
        super().__init__(code, message, details)


class UnknownClientError(InvalidClientError):
    """Client id did not resolve to a registered client."""

    def __init__(self, client_id: Optional[str], details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Client not found: {client_id}",
            details={"client_id": client_id, **(details or {})},
            code="UNKNOWN_CLIENT"
        )
        self.client_id = client_id


class InvalidTokenError(TrustCoreException):
    """Token is absent, unresolvable or expired."""

    def __init__(self, message: str = "Invalid token", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_TOKEN", message, details)


class PolicyViolationError(TrustCoreException):
    """Issuer rejected by the allow-list or deny-list."""

    def __init__(self, message: str = "Issuer policy violation", details: Optional[Dict[str, Any]] = None):
        super().__init__("POLICY_VIOLATION", message, details)


class TransportError(TrustCoreException):
    """Remote call failed or timed out."""

    def __init__(self, service: str, message: str = "Remote call failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSPORT_ERROR", f"{service}: {message}", details)
        self.service = service


class CircuitOpenError(TransportError):
    """Remote call blocked because the circuit breaker is open."""

    def __init__(self, service: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(service, "circuit breaker is open", details)


class MalformedResponseError(TrustCoreException):
    """Remote body could not be parsed into the expected shape."""

    def __init__(self, service: str, message: str = "Malformed response", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_RESPONSE", f"{service}: {message}", details)
        self.service = service
