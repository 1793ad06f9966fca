"""
Polycache - Adapter Results

Typed outcome of every adapter primitive. Backend exceptions are converted to
a failed Result at the adapter boundary by the ``guarded`` decorator, so the
layers above branch on the result tag instead of catching exceptions.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..errors import CacheOperationError, CodecError, ErrorCode, extract_error_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Result:
    """Value of a backend call, or the tag of its failure."""

    value: Any = None
    error_code: ErrorCode | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any = None) -> Result:
        return cls(value=value)

    @classmethod
    def failure(cls, error_code: ErrorCode, error: str | None = None) -> Result:
        return cls(error_code=error_code, error=error)

    @property
    def ok(self) -> bool:
        return self.error_code is None

    @property
    def is_connection_failure(self) -> bool:
        return self.error_code == ErrorCode.CONNECTION_FAILURE

    def unwrap_or(self, default: Any) -> Any:
        """Return the value on success, ``default`` otherwise."""
        return self.value if self.ok else default


def guarded(method: Callable[..., Any]) -> Callable[..., Result]:
    """
    Wrap an adapter method so that it always returns a Result.

    The adapter declares which exception types mean "backend unreachable" in
    its ``connection_errors`` attribute; those become CONNECTION_FAILURE
    results. Any other exception becomes an operation or codec failure.
    """

    @functools.wraps(method)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> Result:
        try:
            return Result.success(method(self, *args, **kwargs))
        except self.connection_errors as e:
            logger.error(
                f"Cache backend '{self.name}' unreachable during {method.__name__}: {e}",
                extra={"backend": self.name, "operation": method.__name__, "error": str(e)},
            )
            return Result.failure(ErrorCode.CONNECTION_FAILURE, str(e))
        except (CacheOperationError, CodecError) as e:
            logger.warning(
                f"Cache backend '{self.name}' rejected {method.__name__}: {e}",
                extra={"backend": self.name, "operation": method.__name__, "error": str(e)},
            )
            return Result.failure(extract_error_code(e), str(e))
        except Exception as e:
            logger.error(
                f"Unexpected error in cache backend '{self.name}' during {method.__name__}: {e}",
                extra={"backend": self.name, "operation": method.__name__, "error": str(e)},
                exc_info=True,
            )
            return Result.failure(extract_error_code(e), str(e))

    return wrapper
