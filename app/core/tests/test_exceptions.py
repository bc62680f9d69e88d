"""
Tests for the application error taxonomy and its DRF mapping.
"""

from unittest.mock import MagicMock

import pytest
from rest_framework.exceptions import ValidationError

from core.exception_handler import application_exception_handler
from core.exceptions import (
    AccessDenied,
    AuthenticationError,
    ConflictError,
    InvalidArgument,
    NotFoundError,
    StorageError,
)


class TestBaseApplicationError:
    """Tests for error codes and payloads."""

    def test_default_error_code(self):
        error = NotFoundError("Conversation not found")
        assert error.error_code == "NOT_FOUND"
        assert str(error) == "[NOT_FOUND] Conversation not found"

    def test_custom_error_code_and_details(self):
        error = AccessDenied("Nope", error_code="NOT_ADMIN", details={"conversation_id": 3})

        assert error.to_dict() == {
            "error": "Nope",
            "error_code": "NOT_ADMIN",
            "details": {"conversation_id": 3},
        }

    def test_empty_details_are_omitted(self):
        assert InvalidArgument("Bad").to_dict() == {"error": "Bad", "error_code": "INVALID_ARGUMENT"}


class TestApplicationExceptionHandler:
    """
    Tests for application_exception_handler.

    Why it matters: Every service error must reach REST clients with the
    right status and a machine-readable code.
    """

    @pytest.mark.parametrize(
        "error,expected_status",
        [
            (InvalidArgument("x"), 400),
            (AuthenticationError("x"), 401),
            (AccessDenied("x"), 403),
            (NotFoundError("x"), 404),
            (ConflictError("x"), 409),
            (StorageError("x"), 503),
        ],
    )
    def test_status_codes(self, error, expected_status):
        response = application_exception_handler(error, {"view": MagicMock()})

        assert response.status_code == expected_status
        assert response.data["error_code"] == error.default_error_code

    def test_drf_errors_fall_through(self):
        response = application_exception_handler(ValidationError({"name": ["Required"]}), {})

        assert response.status_code == 400
        assert response.data == {"name": ["Required"]}

    def test_unknown_errors_are_not_handled(self):
        assert application_exception_handler(RuntimeError("boom"), {}) is None
