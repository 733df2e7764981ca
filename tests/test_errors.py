"""
Unit tests for error module.

Tests the exception hierarchy and status code mapping.
"""

import pytest
from types import SimpleNamespace
from ado_field_tools.errors import (
    AzureDevOpsError,
    NotFoundError,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
    TransientError,
    BadRequestError,
    ConflictError,
    TimeoutError as ADOTimeoutError,
    ExternalToolError,
    extract_service_message,
    map_status_code_to_error
)


class TestAzureDevOpsError:
    """Test base AzureDevOpsError class."""

    def test_base_error_creation(self):
        """Test creating base error with message."""
        error = AzureDevOpsError("Test error message")
        assert str(error) == "Test error message"
        assert error.status_code is None

    def test_base_error_with_status_code(self):
        """Test base error with status code."""
        error = AzureDevOpsError("Test error", status_code=500)
        assert error.status_code == 500
        assert str(error) == "[500] Test error"

    def test_to_dict(self):
        """Test dictionary form used in the run log."""
        error = AzureDevOpsError("Boom", status_code=418, details={'a': 1})
        data = error.to_dict()
        assert data['error'] == 'AzureDevOpsError'
        assert data['status_code'] == 418
        assert data['message'] == 'Boom'
        assert data['details'] == "{'a': 1}"


class TestNotFoundError:
    """Test NotFoundError (404)."""

    def test_error_with_resource(self):
        """Test error message names the resource."""
        error = NotFoundError(resource="Query 'Open bugs'")
        assert error.status_code == 404
        assert "Query 'Open bugs'" in str(error)
        assert "not found" in str(error).lower()

    def test_error_without_resource(self):
        error = NotFoundError()
        assert error.status_code == 404
        assert error.details is None


class TestAuthAndPermissionErrors:
    """Test 401 and 403 errors."""

    def test_authentication_error(self):
        error = AuthenticationError()
        assert error.status_code == 401
        assert "token" in str(error).lower()

    def test_permission_denied_with_scope(self):
        """Test the scope hint appears in the message."""
        error = PermissionDeniedError(operation="update work item", required_scope="vso.work_write")
        assert error.status_code == 403
        assert "vso.work_write" in str(error)
        assert "update work item" in str(error)

    def test_permission_denied_without_details(self):
        error = PermissionDeniedError()
        assert "Permission denied" in str(error)


class TestRateLimitAndTransient:
    """Test 429 and 5xx errors."""

    def test_rate_limit_with_retry_after(self):
        error = RateLimitError(retry_after=30)
        assert error.status_code == 429
        assert error.retry_after == 30
        assert "30 seconds" in str(error)

    def test_rate_limit_without_retry_after(self):
        error = RateLimitError()
        assert error.retry_after is None
        assert "Rerun" in str(error)

    @pytest.mark.parametrize("status_code", [500, 502, 503, 504])
    def test_transient_error(self, status_code):
        error = TransientError(status_code=status_code)
        assert error.status_code == status_code
        assert f"HTTP {status_code}" in str(error)


class TestExternalToolError:
    """Test ExternalToolError."""

    def test_message_includes_output(self):
        error = ExternalToolError("witadmin exportwitd", 1, "TF400813: access denied\n")
        assert error.return_code == 1
        assert str(error) == "witadmin exportwitd exited with code 1: TF400813: access denied"
        assert isinstance(error, AzureDevOpsError)

    def test_message_without_output(self):
        error = ExternalToolError("witadmin exportwitd", 3)
        assert str(error) == "witadmin exportwitd exited with code 3"


class TestErrorMapping:
    """Test map_status_code_to_error."""

    @pytest.mark.parametrize("status_code,error_class", [
        (400, BadRequestError),
        (401, AuthenticationError),
        (403, PermissionDeniedError),
        (404, NotFoundError),
        (408, ADOTimeoutError),
        (409, ConflictError),
        (429, RateLimitError),
        (500, TransientError),
        (503, TransientError),
    ])
    def test_status_code_mapping(self, status_code, error_class):
        error = map_status_code_to_error(status_code)
        assert isinstance(error, error_class)
        assert error.status_code == status_code

    def test_unknown_status_code(self):
        error = map_status_code_to_error(418)
        assert type(error) is AzureDevOpsError
        assert "HTTP 418" in str(error)

    def test_bad_request_carries_service_message(self):
        """Test 400 errors keep the server explanation."""
        original = Exception("generic")
        original.message = "TF401320: Rule Error for field Target"
        error = map_status_code_to_error(400, original_error=original)
        assert "TF401320" in str(error)
        assert error.original_error is original

    def test_rate_limit_passes_retry_after(self):
        error = map_status_code_to_error(429, retry_after=12)
        assert error.retry_after == 12


class TestExtractServiceMessage:
    """Test extract_service_message."""

    def test_prefers_message_attribute(self):
        error = SimpleNamespace(message="server says no")
        assert extract_service_message(error) == "server says no"

    def test_falls_back_to_str(self):
        assert extract_service_message(ValueError("plain")) == "plain"

    def test_unwraps_original_error(self):
        inner = Exception("x")
        inner.message = "inner text"
        wrapped = AzureDevOpsError("outer", original_error=inner)
        assert extract_service_message(wrapped) == "inner text"
