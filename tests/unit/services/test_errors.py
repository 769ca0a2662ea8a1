"""
Unit tests for error classification.
"""

import pytest

from docrepo.infrastructure.store.exceptions import (
    DataAccessException,
    StoreConnectionException,
    StoreOperationException,
    ValidationException,
)
from docrepo.services.errors import (
    ErrorCategory,
    ErrorSeverity,
    PERMANENT_STORE_CODES,
    TRANSIENT_STORE_CODES,
    classify_error,
    describe_error,
    is_retryable_error,
    retry_all_errors,
)


class TestClassifyError:
    """Test classify_error mapping."""

    @pytest.mark.parametrize("code", sorted(TRANSIENT_STORE_CODES))
    def test_transient_store_codes_are_retryable(self, code):
        assert is_retryable_error(StoreOperationException("failed", code=code))

    @pytest.mark.parametrize("code", sorted(PERMANENT_STORE_CODES))
    def test_permanent_store_codes_fail_fast(self, code):
        assert not is_retryable_error(StoreOperationException("failed", code=code))

    def test_store_operation_details(self):
        """Test category, severity and message of a store error."""
        details = classify_error(
            StoreOperationException("Firestore error", code="permission-denied")
        )

        assert details.category is ErrorCategory.PERMISSION
        assert details.severity is ErrorSeverity.MEDIUM
        assert details.code == "permission-denied"
        assert details.message == "Firestore error"
        assert details.retryable is False

    def test_data_loss_is_critical(self):
        details = classify_error(StoreOperationException("lost", code="data-loss"))
        assert details.severity is ErrorSeverity.CRITICAL

    def test_validation_exception(self):
        details = classify_error(ValidationException(["name: Field required"]))

        assert details.category is ErrorCategory.VALIDATION
        assert details.code == "VALIDATION_ERROR"
        assert details.message == "Validation failed: name: Field required"
        assert details.retryable is False

    def test_connection_exception(self):
        details = classify_error(StoreConnectionException())

        assert details.category is ErrorCategory.CONFIGURATION
        assert details.code == "STORE_CONNECTION_ERROR"
        assert not details.retryable

    def test_generic_data_access_exception(self):
        details = classify_error(DataAccessException("odd", error_code="ODD"))
        assert details.code == "ODD"
        assert details.retryable

    def test_network_errors(self):
        """Test builtin network errors and message hints."""
        assert classify_error(ConnectionError("reset")).category is ErrorCategory.NETWORK
        assert classify_error(TimeoutError()).category is ErrorCategory.NETWORK
        assert (
            classify_error(RuntimeError("Network request failed")).category
            is ErrorCategory.NETWORK
        )

    def test_unknown_errors_are_retryable(self):
        details = classify_error(RuntimeError("boom"))

        assert details.category is ErrorCategory.UNKNOWN
        assert details.code == "RuntimeError"
        assert details.retryable

    def test_empty_message_falls_back_to_type(self):
        assert classify_error(KeyError()).message == "KeyError"


class TestRetryPredicates:
    """Test retry predicates."""

    def test_retry_all_retries_permanent_store_codes(self):
        assert retry_all_errors(StoreOperationException("x", code="not-found"))

    def test_retry_all_skips_local_errors(self):
        assert not retry_all_errors(ValidationException(["a: b"]))
        assert not retry_all_errors(StoreConnectionException())


class TestDescribeError:
    """Test structured log fields."""

    def test_fields(self):
        fields = describe_error(
            StoreOperationException("Service unavailable", code="unavailable"),
            "get_all from crew",
        )

        assert fields == {
            "error": "Service unavailable",
            "error_type": "StoreOperationException",
            "error_code": "unavailable",
            "error_category": "network",
            "severity": "high",
            "retryable": True,
            "context": "get_all from crew",
        }
