"""Family membership: resolution, lifecycle operations and their errors."""

from src.membership.directory import MembershipDirectory
from src.membership.errors import (
    AlreadyMemberError,
    FamilyNotFoundError,
    InsufficientPermissionsError,
    JoinRequestExistsError,
    JoinRequestNotFoundError,
    JoinRequestNotPendingError,
    LastAdminError,
    MemberNotFoundError,
    MembershipError,
    MembershipStorageError,
    MembershipValidationError,
    NotAuthenticatedError,
    PartialFailureError,
)

__all__ = [
    "MembershipDirectory",
    "MembershipError",
    "NotAuthenticatedError",
    "InsufficientPermissionsError",
    "AlreadyMemberError",
    "JoinRequestExistsError",
    "JoinRequestNotFoundError",
    "JoinRequestNotPendingError",
    "FamilyNotFoundError",
    "MemberNotFoundError",
    "LastAdminError",
    "MembershipValidationError",
    "MembershipStorageError",
    "PartialFailureError",
]
