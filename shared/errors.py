"""
Shared error handling for the Access Layer.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ConfigurationError(AccessLayerException):
    """Invalid configuration detected at startup."""

    status_code = 500

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class NoIssuerConfigured(AccessLayerException):
    """Neither a matching nor a default issuer is available.

    This is a deployment gap, not a transient condition: callers refuse the
    request instead of retrying.
    """

    status_code = 500

    def __init__(self, message: str = "No token issuer configured", details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_ISSUER_CONFIGURED", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class FetchError(ExternalServiceError):
    """Fetching key material from an issuer failed."""

    def __init__(self, issuer: str, message: str = "Key set fetch failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(issuer, message, {"issuer": issuer, **(details or {})})
        self.code = "FETCH_ERROR"
        self.issuer = issuer


class VerificationUnavailable(AccessLayerException):
    """Key material for an issuer is unusable; tokens must be rejected."""

    status_code = 503

    def __init__(self, issuer: str, last_error: Optional[Exception] = None):
        details: Dict[str, Any] = {"issuer": issuer}
        if last_error is not None:
            details["last_error"] = str(last_error)
        super().__init__(
            "VERIFICATION_UNAVAILABLE",
            f"Verification unavailable for issuer {issuer}",
            details
        )
        self.issuer = issuer
        self.last_error = last_error
