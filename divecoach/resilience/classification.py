"""
Error Classification

Maps an exception raised by an upstream call to an ErrorClassification
(type, severity, retryable). The retry executor uses `retryable`; the error
log and the fallback messages use `type` and `severity`.

Rules are evaluated in order; the first match wins:

    circuit open       -> circuit_open      high      no retry
    rate limit / 429   -> rate_limit        medium    retry
    quota              -> quota_exceeded    critical  no retry
    bad key / 401      -> auth_failure      critical  no retry
    HTTP >= 500        -> server_error      high      retry
    timeout            -> timeout           medium    retry
    connection         -> network_error     medium    retry
    HTTP 400           -> validation_error  low       no retry
    anything else      -> unknown_error     medium    no retry
"""

import asyncio
from typing import Optional

import httpx
import openai

from divecoach.core.exceptions import CircuitOpenError, UpstreamError
from divecoach.models.domain import ErrorClassification, ErrorType, Severity


_NETWORK_MARKERS = ("network", "fetch", "connection", "econnreset", "etimedout")
_TIMEOUT_MARKERS = ("timeout", "timed out")


def _classification(error_type: ErrorType, severity: Severity, retryable: bool) -> ErrorClassification:
    return ErrorClassification(type=error_type, severity=severity, retryable=retryable)


CIRCUIT_OPEN = _classification(ErrorType.CIRCUIT_OPEN, Severity.HIGH, False)
RATE_LIMIT = _classification(ErrorType.RATE_LIMIT, Severity.MEDIUM, True)
QUOTA_EXCEEDED = _classification(ErrorType.QUOTA_EXCEEDED, Severity.CRITICAL, False)
AUTH_FAILURE = _classification(ErrorType.AUTH_FAILURE, Severity.CRITICAL, False)
SERVER_ERROR = _classification(ErrorType.SERVER_ERROR, Severity.HIGH, True)
TIMEOUT = _classification(ErrorType.TIMEOUT, Severity.MEDIUM, True)
NETWORK_ERROR = _classification(ErrorType.NETWORK_ERROR, Severity.MEDIUM, True)
VALIDATION_ERROR = _classification(ErrorType.VALIDATION_ERROR, Severity.LOW, False)
UNKNOWN_ERROR = _classification(ErrorType.UNKNOWN_ERROR, Severity.MEDIUM, False)


def error_status(error: BaseException) -> Optional[int]:
    """HTTP status carried by the exception, if any."""
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def error_code(error: BaseException) -> Optional[str]:
    """Provider error code (e.g. "insufficient_quota"), if any."""
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        nested = body.get("error") if isinstance(body.get("error"), dict) else body
        code = nested.get("code")
        if isinstance(code, str):
            return code
    return None


def _is_timeout(error: BaseException, message: str) -> bool:
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, openai.APITimeoutError, httpx.TimeoutException)):
        return True
    return any(marker in message for marker in _TIMEOUT_MARKERS)


def _is_network(error: BaseException, message: str) -> bool:
    if isinstance(error, (ConnectionError, openai.APIConnectionError, httpx.NetworkError)):
        return True
    return any(marker in message for marker in _NETWORK_MARKERS)


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Classify a failed upstream call.

    Args:
        error: The exception raised by the operation.

    Returns:
        ErrorClassification for the first matching rule.
    """
    if isinstance(error, CircuitOpenError):
        return CIRCUIT_OPEN

    status = error_status(error)
    code = error_code(error)
    message = str(error).lower()
    quota_signal = code == "insufficient_quota" or "quota" in message

    if code == "rate_limit_exceeded" or (status == 429 and not quota_signal):
        return RATE_LIMIT
    if quota_signal:
        return QUOTA_EXCEEDED
    if code == "invalid_api_key" or status == 401:
        return AUTH_FAILURE
    if status is not None and status >= 500:
        return SERVER_ERROR
    if _is_timeout(error, message):
        return TIMEOUT
    if _is_network(error, message):
        return NETWORK_ERROR
    if status == 400 or "validation" in message:
        return VALIDATION_ERROR
    return UNKNOWN_ERROR


def describe_error(error: BaseException) -> str:
    """Message safe to store in the error log (never includes secrets)."""
    if isinstance(error, UpstreamError):
        return error.message
    text = str(error)
    return text or error.__class__.__name__


_BY_TYPE = {
    c.type: c
    for c in (
        CIRCUIT_OPEN,
        RATE_LIMIT,
        QUOTA_EXCEEDED,
        AUTH_FAILURE,
        SERVER_ERROR,
        TIMEOUT,
        NETWORK_ERROR,
        VALIDATION_ERROR,
        UNKNOWN_ERROR,
    )
}


def classification_for(error_type: ErrorType) -> ErrorClassification:
    """The classification a given error type always carries."""
    return _BY_TYPE[error_type]
