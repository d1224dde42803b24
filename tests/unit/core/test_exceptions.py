"""
Tests for custom exception hierarchy.

WHY: Comprehensive exception testing ensures:
1. Exceptions serialize correctly without leaking sensitive data
2. Status codes map correctly
3. Merge errors carry their fixed messages
"""

import warnings

import pytest

from helpdesk.core.exceptions import (
    AppException,
    AuthorizationError,
    InsufficientPermissionsError,
    ValidationError,
    NotFoundError,
    TicketNotFoundError,
    GroupNotFoundError,
    BusinessRuleViolation,
    MergeError,
    SelfMergeError,
    AlreadyMergedError,
    UnrecognizedActionWarning,
)


class TestAppException:
    """Test base AppException class."""

    def test_default_message(self):
        """Verify default message is used when none provided."""
        exc = AppException()
        assert exc.message == "An unexpected error occurred"
        assert exc.status_code == 500

    def test_custom_status_code(self):
        """Verify custom status code overrides class default."""
        exc = AppException(status_code=418)
        assert exc.status_code == 418

    def test_context_data(self):
        """Verify context data is stored."""
        exc = AppException(ticket_id=123, user_id=456)
        assert exc.context == {"ticket_id": 123, "user_id": 456}

    def test_to_dict_filters_sensitive_fields(self):
        """Verify sensitive context keys never reach the payload."""
        exc = AppException("boom", ticket_id=1, password="secret", token="abc")
        data = exc.to_dict()

        assert data["error"] == "AppException"
        assert data["message"] == "boom"
        assert data["details"] == {"ticket_id": 1}

    def test_to_dict_without_context(self):
        """Verify details is None when there is no context."""
        assert AppException().to_dict()["details"] is None


class TestExceptionHierarchy:
    """Status codes and inheritance of the domain exceptions."""

    @pytest.mark.parametrize(
        "exc_class, status_code",
        [
            (ValidationError, 400),
            (AuthorizationError, 403),
            (InsufficientPermissionsError, 403),
            (NotFoundError, 404),
            (TicketNotFoundError, 404),
            (GroupNotFoundError, 404),
            (BusinessRuleViolation, 422),
            (SelfMergeError, 422),
            (AlreadyMergedError, 422),
        ],
    )
    def test_status_codes(self, exc_class, status_code):
        """Each exception maps to its status code."""
        assert exc_class().status_code == status_code

    def test_merge_errors_share_base(self):
        """Both merge rejections can be caught as MergeError."""
        assert issubclass(SelfMergeError, MergeError)
        assert issubclass(AlreadyMergedError, MergeError)
        assert issubclass(MergeError, AppException)

    def test_merge_error_messages(self):
        """Merge rejections carry fixed, descriptive messages."""
        assert str(SelfMergeError()) == "Can't merge ticket with itself!"
        assert str(AlreadyMergedError()) == (
            "ticket already merged, no merge into merged ticket possible"
        )

    def test_unrecognized_action_is_a_warning(self):
        """Unknown rule actions warn instead of raising."""
        with pytest.warns(UnrecognizedActionWarning):
            warnings.warn("unknown", UnrecognizedActionWarning)
