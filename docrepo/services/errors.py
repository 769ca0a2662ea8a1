"""
Error Classification

Maps exceptions raised by the repository layer and its document store onto
categories, severities and a retryable flag. The retry executor uses the
flag to decide whether a failure consumes retry budget.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..infrastructure.store.exceptions import (
    DataAccessException,
    StoreConnectionException,
    StoreOperationException,
    ValidationException,
)


class ErrorCategory(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    PERMISSION = "permission"
    VALIDATION = "validation"
    QUOTA = "quota"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SERVER = "server"
    CONFIGURATION = "configuration"
    CLIENT = "client"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Store status codes worth another attempt
TRANSIENT_STORE_CODES = frozenset(
    {
        "unavailable",
        "deadline-exceeded",
        "resource-exhausted",
        "aborted",
        "internal",
        "data-loss",
        "network-request-failed",
        "unknown",
    }
)

# Store status codes that will fail the same way on every attempt
PERMANENT_STORE_CODES = frozenset(
    {
        "permission-denied",
        "unauthenticated",
        "not-found",
        "invalid-argument",
        "already-exists",
        "failed-precondition",
        "out-of-range",
        "unimplemented",
        "cancelled",
    }
)

_CODE_CATEGORIES = {
    "unavailable": ErrorCategory.NETWORK,
    "deadline-exceeded": ErrorCategory.NETWORK,
    "network-request-failed": ErrorCategory.NETWORK,
    "unauthenticated": ErrorCategory.AUTH,
    "permission-denied": ErrorCategory.PERMISSION,
    "invalid-argument": ErrorCategory.VALIDATION,
    "failed-precondition": ErrorCategory.VALIDATION,
    "out-of-range": ErrorCategory.VALIDATION,
    "resource-exhausted": ErrorCategory.QUOTA,
    "not-found": ErrorCategory.NOT_FOUND,
    "already-exists": ErrorCategory.CONFLICT,
    "aborted": ErrorCategory.CONFLICT,
    "internal": ErrorCategory.SERVER,
    "data-loss": ErrorCategory.SERVER,
}

_NETWORK_HINTS = ("network", "connection", "timeout", "timed out", "unavailable")


@dataclass(frozen=True)
class ErrorDetails:
    """Classified view of a failure."""

    category: ErrorCategory
    severity: ErrorSeverity
    code: str
    message: str
    retryable: bool
    details: Dict[str, Any] = field(default_factory=dict)

    def as_metadata(self) -> Dict[str, Any]:
        return {
            "error_code": self.code,
            "error_category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
        }


def _severity_for(code: str, category: ErrorCategory) -> ErrorSeverity:
    if code in ("data-loss", "internal"):
        return ErrorSeverity.CRITICAL
    if category in (
        ErrorCategory.NETWORK,
        ErrorCategory.SERVER,
        ErrorCategory.QUOTA,
        ErrorCategory.CONFIGURATION,
    ):
        return ErrorSeverity.HIGH
    if category in (ErrorCategory.AUTH, ErrorCategory.PERMISSION):
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.LOW


def classify_error(error: BaseException) -> ErrorDetails:
    """
    Classify an exception.

    Args:
        error: Exception raised by a repository operation

    Returns:
        ErrorDetails with category, severity, code and retryable flag
    """
    message = str(error) or type(error).__name__

    if isinstance(error, ValidationException):
        return ErrorDetails(
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            code=error.error_code or "VALIDATION_ERROR",
            message=error.message,
            retryable=False,
            details=error.details,
        )

    if isinstance(error, StoreConnectionException):
        return ErrorDetails(
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            code=error.error_code or "STORE_CONNECTION_ERROR",
            message=error.message,
            retryable=False,
            details=error.details,
        )

    if isinstance(error, StoreOperationException):
        category = _CODE_CATEGORIES.get(error.code, ErrorCategory.UNKNOWN)
        return ErrorDetails(
            category=category,
            severity=_severity_for(error.code, category),
            code=error.code,
            message=error.message,
            retryable=error.code not in PERMANENT_STORE_CODES,
            details=error.details,
        )

    if isinstance(error, DataAccessException):
        return ErrorDetails(
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.MEDIUM,
            code=error.error_code or "DATA_ACCESS_ERROR",
            message=error.message,
            retryable=True,
            details=error.details,
        )

    if isinstance(error, (ConnectionError, TimeoutError)) or any(
        hint in message.lower() for hint in _NETWORK_HINTS
    ):
        return ErrorDetails(
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.HIGH,
            code=type(error).__name__,
            message=message,
            retryable=True,
        )

    # Unclassified failures are assumed transient
    return ErrorDetails(
        category=ErrorCategory.UNKNOWN,
        severity=ErrorSeverity.MEDIUM,
        code=type(error).__name__,
        message=message,
        retryable=True,
    )


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate: only failures that may succeed on another attempt."""
    return classify_error(error).retryable


def retry_all_errors(error: BaseException) -> bool:
    """Retry predicate that treats every failure as transient."""
    return not isinstance(error, (ValidationException, StoreConnectionException))


def describe_error(error: BaseException, context: Optional[str] = None) -> Dict[str, Any]:
    """Structured log fields for a failure."""
    details = classify_error(error)
    fields = {
        "error": details.message,
        "error_type": type(error).__name__,
        **details.as_metadata(),
    }
    if context:
        fields["context"] = context
    return fields
