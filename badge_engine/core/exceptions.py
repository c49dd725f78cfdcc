"""
Custom exception classes for the badge engine.
Every upstream failure carries an explicit FailureKind so callers never
have to inspect error messages to decide how to react.
"""

from enum import Enum
from typing import Any, Optional, Dict


class FailureKind(str, Enum):
    """Classification of an upstream failure."""
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    AUTH_EXHAUSTED = "auth_exhausted"
    IDENTITY_RESOLUTION_ABORTED = "identity_resolution_aborted"


class BadgeEngineException(Exception):
    """Base exception class for the badge engine."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(BadgeEngineException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class ProviderError(BadgeEngineException):
    """Raised when an upstream provider call fails terminally."""

    def __init__(
        self,
        message: str,
        kind: FailureKind,
        details: Optional[Dict[str, Any]] = None
    ):
        self.kind = kind
        super().__init__(message, kind.value.upper(), details)

    @property
    def retryable(self) -> bool:
        return self.kind in (
            FailureKind.RATE_LIMITED,
            FailureKind.SERVER_ERROR,
            FailureKind.NETWORK_ERROR,
        )


class NotFoundError(ProviderError):
    """Raised when the upstream has no data for the request (404)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, FailureKind.NOT_FOUND, details)


class RateLimitedError(ProviderError):
    """Raised when the upstream rejects the request with a rate limit."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, FailureKind.RATE_LIMITED, details)


class UpstreamServerError(ProviderError):
    """Raised on a 5xx or otherwise unusable upstream response."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, FailureKind.SERVER_ERROR, details)


class UpstreamNetworkError(ProviderError):
    """Raised when the upstream could not be reached."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, FailureKind.NETWORK_ERROR, details)


class AuthExhaustedError(ProviderError):
    """Raised when every credential in a key pool was rejected."""

    def __init__(self, provider: str, key_count: int):
        super().__init__(
            f"All {key_count} API keys for {provider} have exceeded their quota",
            FailureKind.AUTH_EXHAUSTED,
            {"provider": provider, "key_count": key_count}
        )


class RetriesExhaustedError(ProviderError):
    """Raised when a retryable failure persisted past the retry budget."""

    def __init__(self, provider: str, kind: FailureKind, attempts: int, last_error: str):
        super().__init__(
            f"{provider} {kind.value} persisted after {attempts} attempts: {last_error}",
            kind,
            {"provider": provider, "attempts": attempts, "last_error": last_error}
        )
        self.attempts = attempts


class IdentityResolutionAborted(ProviderError):
    """Raised when the social-profile provider is exhausted mid-batch."""

    def __init__(self, address: str, cause: ProviderError):
        super().__init__(
            f"Identity resolution aborted at {address}: {cause.message}",
            FailureKind.IDENTITY_RESOLUTION_ABORTED,
            {"address": address, "cause_kind": cause.kind.value}
        )
        self.cause = cause
