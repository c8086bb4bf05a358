"""
Error Codes and Exception Taxonomy.

Every failure that crosses a component boundary is a NewsTTSError subclass
carrying a machine-readable code. The ``retryable`` flag drives the retry
and circuit-breaker policies through ``is_transient()``, the single place
where errors are classified as transient or permanent.

Taxonomy:
    ConfigurationMissing   no voice pool for a language       fatal
    ProviderTransient      timeout / 5xx / throttling         retried
    ProviderPermanent      bad credentials / unknown voice    fatal
    StorageTransient       IO / permission error              retried
    StorageFatal           file missing or unreadable         fatal
    MergeFailure           ffmpeg failed / broken pipe        retried per job
    RateLimiterExhausted   no slot or token before timeout    retryable by caller
    CircuitOpenError       synthesis circuit is open          retryable by caller

API Error Format:
    {
        "ok": false,
        "error": "PROVIDER_TRANSIENT",
        "message": "provider returned 503",
        "details": {"status": 503}
    }
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx


class ErrorCode:
    """Standardized error codes for logs, notifications and API responses."""
    CONFIGURATION_MISSING = "CONFIGURATION_MISSING"
    PROVIDER_TRANSIENT = "PROVIDER_TRANSIENT"
    PROVIDER_PERMANENT = "PROVIDER_PERMANENT"
    STORAGE_TRANSIENT = "STORAGE_TRANSIENT"
    STORAGE_FATAL = "STORAGE_FATAL"
    MERGE_FAILED = "MERGE_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class NewsTTSError(Exception):
    """
    Base exception for news-tts errors.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode.
        details: Optional dictionary with additional context.
        retryable: Whether the failure is worth retrying.
    """
    retryable: bool = False

    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error response dict for API."""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationMissing(NewsTTSError):
    """Raised when required configuration (e.g. a language's voice pool) is absent."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.CONFIGURATION_MISSING, details)


class ProviderTransient(NewsTTSError):
    """Provider timed out, throttled or returned 5xx."""
    retryable = True

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.PROVIDER_TRANSIENT, details)


class ProviderPermanent(NewsTTSError):
    """Provider rejected the request (credentials, voice id, payload)."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.PROVIDER_PERMANENT, details)


class StorageTransient(NewsTTSError):
    """IO or permission failure that may clear on retry."""
    retryable = True

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.STORAGE_TRANSIENT, details)


class StorageFatal(NewsTTSError):
    """Storage failure that will not clear on retry (missing file, retries exhausted)."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.STORAGE_FATAL, details)


class MergeFailure(NewsTTSError):
    """Transcoder exited non-zero, a pipe broke, or ffmpeg is unavailable."""
    retryable = True

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.MERGE_FAILED, details)


class RateLimiterExhausted(NewsTTSError):
    """No concurrency slot or token became available before the timeout."""
    retryable = True

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.RATE_LIMITED, details)


class CircuitOpenError(NewsTTSError):
    """Call short-circuited because the breaker is open."""
    retryable = True

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.CIRCUIT_OPEN, details)


_TRANSIENT_TYPES = (
    asyncio.TimeoutError,
    httpx.TimeoutException,
    httpx.TransportError,
    ConnectionError,
)


def is_transient(exc: BaseException) -> bool:
    """
    Classify an exception as transient (worth retrying) or not.

    CircuitOpenError is retryable for the caller but never retried inside
    the pipeline that raised it.
    """
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, NewsTTSError):
        return exc.retryable
    return isinstance(exc, _TRANSIENT_TYPES)


# Mapping used by the HTTP layer
HTTP_STATUS = {
    ErrorCode.CONFIGURATION_MISSING: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.PROVIDER_PERMANENT: 502,
    ErrorCode.PROVIDER_TRANSIENT: 503,
    ErrorCode.CIRCUIT_OPEN: 503,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.STORAGE_TRANSIENT: 500,
    ErrorCode.STORAGE_FATAL: 500,
    ErrorCode.MERGE_FAILED: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}
