"""
Custom exceptions for divecoach.

All exceptions inherit from CoachError and carry an ErrorCode so that
routes, logs and monitoring entries identify failures consistently.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode(str, Enum):
    """Machine-readable error codes used in logs and API payloads."""

    COACH_ERROR = "COACH_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    STORE_ERROR = "STORE_ERROR"
    CACHE_ERROR = "CACHE_ERROR"
    MONITORING_ERROR = "MONITORING_ERROR"


# =============================================================================
# Base Exception
# =============================================================================


class CoachError(Exception):
    """
    Base exception for all divecoach errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.COACH_ERROR,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

        for key, value in kwargs.items():
            setattr(self, key, value)


# =============================================================================
# Upstream (OpenAI / Pinecone / Supabase) Failures
# =============================================================================


class UpstreamError(CoachError):
    """
    Exception for failed calls to an external service.

    Attributes:
        service: Name of the upstream service (e.g., "openai").
        status_code: HTTP status returned by the service, if any.
        code: Provider error code (e.g., "insufficient_quota"), if any.
    """

    def __init__(
        self,
        message: str,
        service: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        error_code: str = ErrorCode.UPSTREAM_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)
        self.service = service
        self.status_code = status_code
        self.code = code


class CircuitOpenError(CoachError):
    """
    Raised when a call is refused because the endpoint's circuit is open.

    Attributes:
        endpoint: Logical endpoint name whose circuit refused the call.
        next_attempt_time: When the circuit will admit a trial request.
    """

    def __init__(
        self,
        endpoint: str,
        next_attempt_time: Optional[datetime] = None,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message or f"Circuit breaker is open for {endpoint}",
            error_code=ErrorCode.CIRCUIT_OPEN,
        )
        self.endpoint = endpoint
        self.next_attempt_time = next_attempt_time


# =============================================================================
# Storage Failures
# =============================================================================


class StoreError(CoachError):
    """Exception for resilience store backend failures."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, error_code=ErrorCode.STORE_ERROR, **kwargs)


class CacheError(CoachError):
    """Exception for response cache failures."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, error_code=ErrorCode.CACHE_ERROR, **kwargs)


class MonitoringError(CoachError):
    """Exception for usage/error recording failures."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, error_code=ErrorCode.MONITORING_ERROR, **kwargs)

