"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling for every caller of the ticket core
2. Status code mapping for whichever transport wraps the core
3. Structured error payloads with contextual data
4. No sensitive data leaks in error messages

IMPORTANT: NEVER raise the base Exception class. Always use these.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all helpdesk exceptions.

    WHY: A single base class lets callers catch every domain failure in one
    place and serialize it the same way.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: Status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        sensitive_fields = {"password", "token", "secret", "key", "api_key"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authorization Exceptions
# ============================================================================


class AuthorizationError(AppException):
    """
    Raised when a user lacks permissions for an action.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class InsufficientPermissionsError(AuthorizationError):
    """
    Raised when the ticket access policy denies the requested level.

    HTTP Status: 403 Forbidden
    """

    default_message = "Insufficient permissions"


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when a value violates a model invariant or input constraint.

    WHY: Covers both malformed input (an uncoercible id in a trigger) and
    rejected writes (a ticket without a state), so callers only need one
    except clause to stop a batch.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class NotFoundError(AppException):
    """
    Raised when a referenced identity does not resolve.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class TicketNotFoundError(NotFoundError):
    """Raised when a ticket doesn't exist."""

    default_message = "Ticket not found"


class UserNotFoundError(NotFoundError):
    """Raised when a user doesn't exist."""

    default_message = "User not found"


class GroupNotFoundError(NotFoundError):
    """Raised when a group doesn't exist."""

    default_message = "Group not found"


class StateNotFoundError(NotFoundError):
    """Raised when a ticket state doesn't exist."""

    default_message = "Ticket state not found"


class PriorityNotFoundError(NotFoundError):
    """Raised when a ticket priority doesn't exist."""

    default_message = "Ticket priority not found"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    WHY: The request was well formed but cannot be applied to the current
    state of the data.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class MergeError(BusinessRuleViolation):
    """Base class for rejected ticket merges."""

    default_message = "Ticket merge rejected"


class SelfMergeError(MergeError):
    """
    Raised when a ticket is merged into itself.

    HTTP Status: 422 Unprocessable Entity
    """

    default_message = "Can't merge ticket with itself!"


class AlreadyMergedError(MergeError):
    """
    Raised when the merge target has itself been merged.

    WHY: Merging into a merged ticket would create chains (A → B → C) or
    cycles (A → B, B → A) that no longer have a single surviving ticket.

    HTTP Status: 422 Unprocessable Entity
    """

    default_message = "ticket already merged, no merge into merged ticket possible"


# ============================================================================
# Warnings
# ============================================================================


class UnrecognizedActionWarning(UserWarning):
    """
    Emitted for rule-engine actions the engine does not understand.

    The action is skipped and the rest of the batch still runs.
    """
