"""Membership lifecycle errors."""

from typing import Any, Dict, Optional


class MembershipError(Exception):
    """Base exception for membership operations."""

    error_code = "MEMBERSHIP_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.context = context or {}


class NotAuthenticatedError(MembershipError):
    """No identity is signed in."""
    error_code = "NOT_AUTHENTICATED"


class InsufficientPermissionsError(MembershipError):
    """The caller's role doesn't allow the operation."""
    error_code = "INSUFFICIENT_PERMISSIONS"

    def __init__(self, message: str, required_role: Optional[str] = None, user_role: Optional[str] = None):
        super().__init__(message, context={"required_role": required_role, "user_role": user_role})
        self.required_role = required_role
        self.user_role = user_role


class AlreadyMemberError(MembershipError):
    """The identity already belongs to a family."""
    error_code = "ALREADY_MEMBER"


class JoinRequestExistsError(MembershipError):
    """The identity already has a pending join request."""
    error_code = "JOIN_REQUEST_EXISTS"


class JoinRequestNotFoundError(MembershipError):
    """No such join request for this family."""
    error_code = "JOIN_REQUEST_NOT_FOUND"


class JoinRequestNotPendingError(MembershipError):
    """The join request was already approved or rejected."""
    error_code = "JOIN_REQUEST_NOT_PENDING"

    def __init__(self, message: str, request_id: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message, context={"request_id": request_id, "status": status})
        self.status = status


class FamilyNotFoundError(MembershipError):
    """No family with that id or invite code."""
    error_code = "FAMILY_NOT_FOUND"


class MemberNotFoundError(MembershipError):
    """No such member in the caller's family."""
    error_code = "MEMBER_NOT_FOUND"


class LastAdminError(MembershipError):
    """The operation would leave the family without an admin."""
    error_code = "LAST_ADMIN"


class MembershipValidationError(MembershipError):
    """A required value is missing or empty."""
    error_code = "VALIDATION_ERROR"


class MembershipStorageError(MembershipError):
    """The remote store rejected or failed a write."""
    error_code = "STORAGE_ERROR"


class PartialFailureError(MembershipError):
    """
    A multi-step operation failed halfway.

    compensated tells whether the first step was undone.
    """
    error_code = "PARTIAL_FAILURE"

    def __init__(self, message: str, operation: str, compensated: bool):
        super().__init__(message, context={"operation": operation, "compensated": compensated})
        self.operation = operation
        self.compensated = compensated
