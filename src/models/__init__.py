"""
Data Models Package

This package contains all Pydantic models used by the household core.
Everything read from or written to the remote store passes through these.
"""

from src.models.family import (
    Family,
    FamilyDraft,
    FamilyMembership,
    FamilyPreview,
    JoinRequest,
    JoinRequestStatus,
    Member,
    MemberDraft,
    MemberPatch,
    MemberRole,
    MembershipState,
    NoFamily,
    PendingApproval,
    Unresolved,
)
from src.models.notification import (
    Notification,
    NotificationBuilder,
    NotificationEventType,
    NotificationVariant,
)
from src.models.resources import (
    Bill,
    BillDraft,
    BillStatus,
    PantryItem,
    PantryItemDraft,
    ShoppingItem,
    ShoppingItemDraft,
    Task,
    TaskDraft,
    TaskPriority,
    Transaction,
    TransactionDraft,
    TransactionType,
)

__all__ = [
    # Membership models
    "Family",
    "FamilyDraft",
    "FamilyMembership",
    "FamilyPreview",
    "JoinRequest",
    "JoinRequestStatus",
    "Member",
    "MemberDraft",
    "MemberPatch",
    "MemberRole",
    "MembershipState",
    "NoFamily",
    "PendingApproval",
    "Unresolved",
    # Resource models
    "Bill",
    "BillDraft",
    "BillStatus",
    "PantryItem",
    "PantryItemDraft",
    "ShoppingItem",
    "ShoppingItemDraft",
    "Task",
    "TaskDraft",
    "TaskPriority",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    # Notification models
    "Notification",
    "NotificationBuilder",
    "NotificationEventType",
    "NotificationVariant",
]
