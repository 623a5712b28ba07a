"""Exceptions related to appdef.

Every exception raised by the reconciliation engine carries an explicit
`ErrorCategory` so that the controller can classify the first error of a pass
without inspecting the message text.
"""

from enum import StrEnum

__all__ = [
    "ErrorCategory",
    "AppDefException",
    "ValidationError",
    "DecodeError",
    "BuildError",
    "InvalidBuiltObjectError",
    "OwnershipError",
    "ApplyError",
    "HealthCheckError",
    "InternalError",
    "StoreError",
    "ObjectNotFoundError",
    "ConflictError",
    "InvalidObjectError",
]


class ErrorCategory(StrEnum):
    """Category of an error encountered during a convergence pass."""

    VALIDATION = "Validation"
    DECODE = "Decode"
    BUILD = "Build"
    OWNERSHIP = "Ownership"
    APPLY = "Apply"
    HEALTH = "HealthProcess"
    CONFLICT = "Conflict"
    INTERNAL = "Internal"
    STORE = "Store"


class AppDefException(Exception):
    """Generic base exception used for this library."""

    category: ErrorCategory = ErrorCategory.INTERNAL


class ValidationError(AppDefException):
    """Raised when the desired-state object is malformed (e.g. duplicate names)."""

    category = ErrorCategory.VALIDATION


class DecodeError(AppDefException):
    """Raised when a component configuration cannot be decoded."""

    category = ErrorCategory.DECODE


class BuildError(AppDefException):
    """Raised when a builder fails or returns malformed objects."""

    category = ErrorCategory.BUILD

    def __init__(self, message: str, reason: str = "BuildObjectsFailed") -> None:
        super().__init__(message)
        self.reason = reason


class InvalidBuiltObjectError(BuildError):
    """Raised when a builder returns an object without complete identity."""

    def __init__(self, message: str) -> None:
        super().__init__(message, reason="InvalidBuiltObject")


class OwnershipError(AppDefException):
    """Raised when an owner reference cannot be attached to a child object."""

    category = ErrorCategory.OWNERSHIP


class ApplyError(AppDefException):
    """Raised when a child object cannot be applied."""

    category = ErrorCategory.APPLY


class HealthCheckError(AppDefException):
    """Raised when the health check process itself fails.

    This is distinct from the checked resource being unhealthy, which is
    reported as a normal not-ready result.
    """

    category = ErrorCategory.HEALTH


class InternalError(AppDefException):
    """Raised on engine-level inconsistencies that should never happen."""

    category = ErrorCategory.INTERNAL


class StoreError(AppDefException):
    """Base class for errors returned by the object store."""

    category = ErrorCategory.STORE


class ObjectNotFoundError(StoreError):
    """Raised when an object is not found in the store."""


class ConflictError(StoreError):
    """Raised when a write is rejected by optimistic concurrency or field ownership."""

    category = ErrorCategory.CONFLICT


class InvalidObjectError(StoreError):
    """Raised when the store rejects an object as invalid."""
