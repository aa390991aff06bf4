"""
LiveTriage - Exception Hierarchy

Structured exceptions for consistent error handling across the system.
All exceptions carry an error code and an HTTP status for API responses.
"""

from typing import Optional


class LiveTriageError(Exception):
    """Base exception for all LiveTriage errors."""

    code: str = "UNKNOWN_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(LiveTriageError):
    """Server is missing required configuration (e.g. an API key)."""
    code = "CONFIGURATION_ERROR"
    status_code = 500


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(LiveTriageError):
    """Client input error. Always recoverable by the caller."""
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTriagePayloadError(ValidationError):
    """Triage payload is missing, not JSON, or not an object."""
    code = "INVALID_TRIAGE_PAYLOAD"


# =============================================================================
# Upstream Errors
# =============================================================================

class UpstreamError(LiveTriageError):
    """
    Remote API failure.

    The status code is the upstream's own status when one was received,
    otherwise 502.
    """
    code = "UPSTREAM_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        if status_code is not None:
            self.status_code = status_code


# =============================================================================
# Call Session Errors
# =============================================================================

class CallSessionError(LiveTriageError):
    """Error in the caller-side voice session."""
    code = "CALL_SESSION_ERROR"
    status_code = 409


class InvalidTransitionError(CallSessionError):
    """Operation not allowed in the session's current state."""
    code = "INVALID_TRANSITION"


class CallInitError(CallSessionError):
    """Session credential could not be obtained."""
    code = "CALL_INIT_FAILED"
    status_code = 502
