"""
Document Store Exceptions

Domain-specific exceptions for the repository layer and its document store.
Exceptions preserve context; the repository converts them into failure
results at its public boundary.
"""

from typing import Any, Dict, List, Optional


class DataAccessException(Exception):
    """Base exception for repository and document store errors.

    Carries a stable error code and structured details for diagnostics.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(DataAccessException):
    """Raised when a payload fails the collection schema.

    Always client-local and never retried.
    """

    def __init__(
        self,
        violations: List[str],
        collection: Optional[str] = None,
    ):
        details: Dict[str, Any] = {"violations": list(violations)}
        if collection:
            details["collection"] = collection

        super().__init__(
            message=f"Validation failed: {'; '.join(violations)}",
            error_code="VALIDATION_ERROR",
            details=details,
        )
        self.violations = list(violations)


class StoreConnectionException(DataAccessException):
    """Raised when the document store handle is unavailable or unconfigured."""

    def __init__(
        self,
        message: str = "Document store not initialized. Please check your store configuration.",
        collection: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if collection:
            details["collection"] = collection
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="STORE_CONNECTION_ERROR", details=details
        )
        # Preserve exception context for debugging (exception chaining)
        if original_error:
            self.__cause__ = original_error


class StoreOperationException(DataAccessException):
    """Raised by a document store when a network call fails.

    ``code`` is the store status code, e.g. ``unavailable``,
    ``permission-denied`` or ``not-found``.
    """

    def __init__(
        self,
        message: str,
        code: str = "unknown",
        collection: Optional[str] = None,
        document_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"code": code}
        if collection:
            details["collection"] = collection
        if document_id:
            details["document_id"] = document_id
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=message, error_code="STORE_OPERATION_ERROR", details=details
        )
        self.code = code
        if original_error:
            self.__cause__ = original_error
