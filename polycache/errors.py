"""
Polycache - Core Error Types

Defines the exception hierarchy for the caching layer.
All exceptions inherit from PolycacheError for consistent error handling.

Only ConfigurationError (and DependencyError, which the registry wraps into a
ConfigurationError) ever reaches callers. Everything raised by a backend is
converted into a failed Result at the adapter boundary and surfaced as the
operation's failure sentinel.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """
    Failure tags carried by adapter results.

    The fail-over orchestrator inspects these tags to decide whether a call
    should be re-issued against the backup driver.
    """

    # Backend unreachable: triggers fail-over
    CONNECTION_FAILURE = "CONNECTION_FAILURE"

    # Backend reachable but the call failed (type mismatch, missing key, ...)
    OPERATION_FAILURE = "OPERATION_FAILURE"

    # Stored payload could not be decoded
    CODEC_FAILURE = "CODEC_FAILURE"

    # No usable backup for a disconnected primary
    FALLBACK_UNAVAILABLE = "FALLBACK_UNAVAILABLE"

    # Unexpected exception inside an adapter
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PolycacheError(Exception):
    """Base exception for all Polycache errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for diagnostics."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(PolycacheError):
    """Raised when configuration is invalid or a driver cannot be constructed."""

    pass


class CacheError(PolycacheError):
    """Base exception for cache-related errors."""

    pass


class CacheConnectionError(CacheError):
    """Raised when a cache backend cannot be reached."""

    def __init__(self, backend: str, details: dict[str, Any] | None = None):
        message = f"Failed to connect to cache backend: {backend}"
        super().__init__(message, details)
        self.backend = backend


class CacheOperationError(CacheError):
    """Raised when a reachable backend rejects an operation."""

    pass


class RollbackError(CacheError):
    """Raised when a compensating write of a failed batch does not succeed."""

    def __init__(self, key: str, details: dict[str, Any] | None = None):
        message = f"Rollback failed for key: {key}"
        super().__init__(message, details)
        self.key = key


class CodecError(CacheError):
    """Raised when a stored payload cannot be encoded or decoded."""

    pass


class DependencyError(PolycacheError):
    """Raised when a required dependency is missing or fails to load."""

    def __init__(
        self,
        package: str,
        feature: str | None = None,
        install_hint: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        if feature:
            message = f"Required dependency '{package}' is missing for {feature}"
        else:
            message = f"Required dependency '{package}' is missing"

        if install_hint:
            message += f". Install with: {install_hint}"

        error_details = details or {}
        error_details.update(
            {
                "package": package,
                "feature": feature,
                "install_hint": install_hint,
            }
        )

        super().__init__(message, error_details)


def extract_error_code(error: Exception) -> ErrorCode:
    """
    Map an exception raised inside an adapter to a result tag.

    Args:
        error: Exception to categorize

    Returns:
        Appropriate ErrorCode for the exception
    """
    if isinstance(error, CacheConnectionError):
        return ErrorCode.CONNECTION_FAILURE

    if isinstance(error, CodecError):
        return ErrorCode.CODEC_FAILURE

    if isinstance(error, CacheOperationError):
        return ErrorCode.OPERATION_FAILURE

    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCode.CONNECTION_FAILURE

    return ErrorCode.INTERNAL_ERROR
