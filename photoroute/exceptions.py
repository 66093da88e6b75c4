"""
PhotoRoute exception hierarchy and shared provider error taxonomy.

All custom exceptions inherit from PhotoRouteException so callers can
catch a single base type when they want a broad safety net.  Vendor
adapters translate every backend failure into a :class:`ProviderError`
carrying one :class:`ErrorKind`; the routing engine never inspects
vendor-specific bodies.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Provider failure taxonomy shared by every backend."""

    NOT_SUPPORTED = "not_supported"
    INVALID_INPUT = "invalid_input"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNAUTHORIZED = "unauthorized"
    QUOTA_EXCEEDED = "quota_exceeded"
    DECODE_FAILED = "decode_failed"
    NETWORK_ERROR = "network_error"
    CONFIGURATION_ERROR = "configuration_error"
    UNKNOWN = "unknown"

    @property
    def is_retryable(self) -> bool:
        """Whether retrying the same provider can change the outcome."""
        return self in _RETRYABLE

    @property
    def invalidates_configuration(self) -> bool:
        """Whether the error means the provider's credentials are bad."""
        return self in (ErrorKind.UNAUTHORIZED, ErrorKind.CONFIGURATION_ERROR)


_RETRYABLE = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.SERVICE_UNAVAILABLE, ErrorKind.NETWORK_ERROR}
)


class PhotoRouteException(Exception):
    """Base exception for all PhotoRoute errors."""


class ConfigurationError(PhotoRouteException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class ProviderNotFoundError(PhotoRouteException, KeyError):
    """Raised when a requested provider is not in the registry."""


class CreditLedgerError(PhotoRouteException):
    """Raised when a credit reservation is used against the wrong ledger."""


class ProviderError(PhotoRouteException):
    """Raised by a provider adapter when an edit or probe fails.

    Args:
        kind: Taxonomy bucket for the failure.
        message: Human-readable detail for logs and diagnostics.
        retry_after: Vendor-supplied retry hint in seconds, if any.
        status_code: HTTP status that produced the error, if any.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str = "",
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.message = message or kind.value.replace("_", " ")
        self.retry_after = retry_after
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def is_retryable(self) -> bool:
        return self.kind.is_retryable

    def __repr__(self) -> str:
        return (
            f"ProviderError(kind={self.kind.value!r}, message={self.message!r}, "
            f"retry_after={self.retry_after!r})"
        )
