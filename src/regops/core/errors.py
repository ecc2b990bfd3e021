"""
Structured error types for the registry job subsystem.

Every failure the job machinery can observe maps onto one branch of this
hierarchy, and each branch carries the retry semantics the reconcilers act
on. Reconcilers never inspect error strings: they ask ``is_retryable`` or
match on the class.

Manifesto:
    - **Typed Error Hierarchy:** Store, transient, validation, config and
      orchestration failures are distinct classes
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry the object they were raised for
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       RegopsError                                │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  StoreError          TransientError      ValidationError        │
        │  (STORE)             (retryable=True)    (VALIDATION)           │
        │     │                    │                    │                  │
        │  NotFoundError       PoolClosedError     InvalidScheduleError   │
        │  AlreadyExistsError                                             │
        │  ConflictError (retryable)                                      │
        │                                                                  │
        │  ConfigError         OrchestrationError                         │
        │  (CONFIG)            (ORCHESTRATION)                            │
        │     │                    │                                       │
        │  MissingHandlerError ScheduleError                              │
        │  RegistryFrozenError    │                                        │
        │                      TooManyMissedSchedulesError                │
        └─────────────────────────────────────────────────────────────────┘

    How reconcilers treat each branch:

        NotFoundError                 no-op, never retried
        ConflictError                 re-read and re-apply immediately
        TransientError / socket error message recorded, job left non-terminal
        ValidationError               terminal Failed / False condition
        TooManyMissedSchedulesError   logged, cron job left untouched
        ConfigError                   aborts startup; logged at runtime

Examples:
    >>> err = NotFoundError.for_object("RegistryJob", "default", "scan-1")
    >>> err.retryable
    False
    >>> ConflictError("stale write").retryable
    True

Tags:
    error-handling, exception-hierarchy, retry-logic, regops-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import errno
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"           # Registry API, scanner, signer calls
    STORE = "STORE"               # Object store reads/writes

    # Data errors
    VALIDATION = "VALIDATION"     # Malformed spec, bad cron expression

    # Configuration errors (never retryable)
    CONFIG = "CONFIG"             # Missing handler, bad settings

    # Application errors
    ORCHESTRATION = "ORCHESTRATION"  # Scheduling, dispatch, pipelines

    # Internal errors
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging."""

    kind: str | None = None
    namespace: str | None = None
    name: str | None = None
    job_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["kind", "namespace", "name", "job_type"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RegopsError(Exception):
    """
    Base exception for all regops errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites rarely pass either explicitly.

    Examples:
        >>> err = RegopsError("boom").with_context(kind="RegistryJob", name="j1")
        >>> err.context.name
        'j1'
        >>> err.to_dict()["category"]
        'INTERNAL'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RegopsError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(RegopsError):
    """Base class for object store failures."""

    default_category = ErrorCategory.STORE
    default_retryable = False

    @classmethod
    def for_object(cls, kind: str, namespace: str, name: str, message: str | None = None) -> StoreError:
        err = cls(message or cls._default_message(kind, namespace, name))
        err.with_context(kind=kind, namespace=namespace, name=name)
        return err

    @staticmethod
    def _default_message(kind: str, namespace: str, name: str) -> str:
        return f"{kind} {namespace}/{name}: store error"


class NotFoundError(StoreError):
    """The record vanished between the watch event and the read."""

    @staticmethod
    def _default_message(kind: str, namespace: str, name: str) -> str:
        return f"{kind} {namespace}/{name} not found"


class AlreadyExistsError(StoreError):
    """A create collided with an existing record of the same name."""

    @staticmethod
    def _default_message(kind: str, namespace: str, name: str) -> str:
        return f"{kind} {namespace}/{name} already exists"


class ConflictError(StoreError):
    """Optimistic-concurrency failure: the write was based on a stale read."""

    default_retryable = True

    @staticmethod
    def _default_message(kind: str, namespace: str, name: str) -> str:
        return f"{kind} {namespace}/{name} was modified concurrently"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(RegopsError):
    """Temporary failure inside a handler (network, IO). Retried on next reconcile."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class PoolClosedError(TransientError):
    """The worker pool no longer accepts tasks."""

    default_category = ErrorCategory.ORCHESTRATION


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(RegopsError):
    """
    Permanent validation failure.

    Never retryable - the record must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        if self.constraint:
            result["constraint"] = self.constraint
        return result


class InvalidScheduleError(ValidationError):
    """Cron expression could not be parsed as a standard 5-field schedule."""

    def __init__(self, schedule: str, reason: str | None = None, **kwargs: Any):
        message = f"unparseable schedule {schedule!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, field="schedule", value=schedule, **kwargs)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(RegopsError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingHandlerError(ConfigError):
    """No handler is registered for a job type."""

    def __init__(self, job_type: str, available: list[str] | None = None):
        self.job_type = job_type
        self.available = available or []
        super().__init__(
            f"No handler registered for job type {job_type!r}. "
            f"Available: {self.available or 'none'}"
        )


class RegistryFrozenError(ConfigError):
    """Registration attempted after the handler registry was frozen."""


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(RegopsError):
    """Scheduling or dispatch failure."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class ScheduleError(OrchestrationError):
    """Cron schedule could not be evaluated."""


class TooManyMissedSchedulesError(ScheduleError):
    """More missed firings than the catch-up cap allows; no job is created."""

    def __init__(self, cap: int, **kwargs: Any):
        self.cap = cap
        super().__init__(
            f"too many unstarted schedules (> {cap}); "
            "reset lastScheduledTime to resume",
            **kwargs,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


# OSError errnos worth another attempt; anything else (missing file, denied
# access, full disk) fails the same way every time
TRANSIENT_ERRNOS = frozenset(
    {
        errno.EAGAIN,
        errno.EINTR,
        errno.EBUSY,
        errno.ETIMEDOUT,
        errno.ECONNRESET,
        errno.ECONNREFUSED,
        errno.ECONNABORTED,
        errno.ENETDOWN,
        errno.ENETUNREACH,
        errno.ENETRESET,
        errno.EHOSTUNREACH,
        errno.EPIPE,
    }
)


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, RegopsError):
        return error.retryable
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    if isinstance(error, OSError):
        return error.errno in TRANSIENT_ERRNOS
    return False


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, RegopsError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RegopsError",
    # Store
    "StoreError",
    "NotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    # Transient
    "TransientError",
    "PoolClosedError",
    # Validation
    "ValidationError",
    "InvalidScheduleError",
    # Config
    "ConfigError",
    "MissingHandlerError",
    "RegistryFrozenError",
    # Orchestration
    "OrchestrationError",
    "ScheduleError",
    "TooManyMissedSchedulesError",
    # Utilities
    "TRANSIENT_ERRNOS",
    "is_retryable",
    "categorize_error",
]
