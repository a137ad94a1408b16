"""
Notification Models

Every user-facing outcome of a write (created, toggled, removed, failed,
rolled back) and every membership transition produces a Notification.

The UI layer renders them as toasts. The structured log keeps them as a
trace of what happened and in which order.

DESIGN DECISION: Failures are never silent. A failed remote write always
yields exactly one DESTRUCTIVE notification, even when the local cache has
already been restored.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from src.models.family import utcnow


class NotificationEventType(str, Enum):
    """What happened. One value per kind of outcome."""
    # Resource synchronization
    RESOURCE_LOADED = "resource_loaded"
    RESOURCE_LOAD_FAILED = "resource_load_failed"
    RESOURCE_ADDED = "resource_added"
    RESOURCE_UPDATED = "resource_updated"
    RESOURCE_TOGGLED = "resource_toggled"
    RESOURCE_REMOVED = "resource_removed"
    RESOURCES_REMOVED = "resources_removed"
    RESOURCES_IMPORTED = "resources_imported"
    NOTHING_TO_IMPORT = "nothing_to_import"
    MUTATION_FAILED = "mutation_failed"

    # Membership lifecycle
    FAMILY_CREATED = "family_created"
    JOIN_REQUESTED = "join_requested"
    JOIN_REQUEST_CANCELLED = "join_request_cancelled"
    JOIN_REQUEST_APPROVED = "join_request_approved"
    JOIN_REQUEST_REJECTED = "join_request_rejected"
    MEMBER_ADDED = "member_added"
    MEMBER_UPDATED = "member_updated"
    MEMBER_REMOVED = "member_removed"
    MEMBERSHIP_FAILED = "membership_failed"


class NotificationVariant(str, Enum):
    """How loudly the UI should present the notification."""
    DEFAULT = "default"
    SUCCESS = "success"
    DESTRUCTIVE = "destructive"


class Notification(BaseModel):
    """A single user-visible outcome."""

    notification_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utcnow)

    event_type: NotificationEventType
    variant: NotificationVariant = NotificationVariant.DEFAULT

    title: str = Field(..., max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)

    # What the notification is about
    entity_type: Optional[str] = Field(
        default=None,
        description="Resource or membership entity (e.g. 'tasks', 'join_request')"
    )
    entity_id: Optional[str] = None

    # Ties a failure notification to the mutation that caused it
    correlation_id: Optional[UUID] = None

    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return self.variant == NotificationVariant.DESTRUCTIVE

    def to_log_dict(self) -> dict:
        """Flatten for structured logging."""
        return {
            "notification_id": str(self.notification_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "variant": self.variant.value,
            "title": self.title,
            "description": self.description,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_log_dict(), default=str)


class NotificationBuilder:
    """
    Helper class to build notifications with common patterns.

    Usage:
        n = NotificationBuilder.resource_added("tasks", "Task", task.id, task.title)
        n = NotificationBuilder.mutation_failed("tasks", "update", "Task", task.id, err)
    """

    @staticmethod
    def resource_loaded(entity_type: str, count: int) -> Notification:
        return Notification(
            event_type=NotificationEventType.RESOURCE_LOADED,
            title=f"Loaded {count} {entity_type}",
            entity_type=entity_type,
            details={"count": count},
        )

    @staticmethod
    def resource_load_failed(entity_type: str, label: str, error: str) -> Notification:
        return Notification(
            event_type=NotificationEventType.RESOURCE_LOAD_FAILED,
            variant=NotificationVariant.DESTRUCTIVE,
            title=f"Could not load {label.lower()}s",
            entity_type=entity_type,
            error_message=error,
        )

    @staticmethod
    def resource_added(
        entity_type: str,
        label: str,
        entity_id: str,
        summary: str,
    ) -> Notification:
        return Notification(
            event_type=NotificationEventType.RESOURCE_ADDED,
            variant=NotificationVariant.SUCCESS,
            title=f"{label} added",
            description=summary,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    @staticmethod
    def resource_updated(
        entity_type: str,
        label: str,
        entity_id: str,
        changes: dict,
    ) -> Notification:
        return Notification(
            event_type=NotificationEventType.RESOURCE_UPDATED,
            variant=NotificationVariant.SUCCESS,
            title=f"{label} updated",
            entity_type=entity_type,
            entity_id=entity_id,
            details={"changes": sorted(changes)},
        )

    @staticmethod
    def resource_toggled(
        entity_type: str,
        label: str,
        entity_id: str,
        summary: str,
        changes: dict,
    ) -> Notification:
        return Notification(
            event_type=NotificationEventType.RESOURCE_TOGGLED,
            variant=NotificationVariant.SUCCESS,
            title=f"{label} updated",
            description=summary,
            entity_type=entity_type,
            entity_id=entity_id,
            details={"changes": {k: str(v) for k, v in changes.items()}},
        )

    @staticmethod
    def resource_removed(
        entity_type: str,
        label: str,
        entity_id: str,
        summary: str,
    ) -> Notification:
        return Notification(
            event_type=NotificationEventType.RESOURCE_REMOVED,
            title=f"{label} removed",
            description=summary,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    @staticmethod
    def resources_removed(entity_type: str, label: str, count: int) -> Notification:
        return Notification(
            event_type=NotificationEventType.RESOURCES_REMOVED,
            title=f"{count} {label.lower()}(s) removed",
            entity_type=entity_type,
            details={"count": count},
        )

    @staticmethod
    def resources_imported(entity_type: str, count: int, source: str) -> Notification:
        return Notification(
            event_type=NotificationEventType.RESOURCES_IMPORTED,
            variant=NotificationVariant.SUCCESS,
            title="List updated",
            description=f"{count} item(s) imported from the {source}.",
            entity_type=entity_type,
            details={"count": count, "source": source},
        )

    @staticmethod
    def nothing_to_import(entity_type: str, source: str) -> Notification:
        return Notification(
            event_type=NotificationEventType.NOTHING_TO_IMPORT,
            title="All stocked up",
            description=f"Nothing in the {source} is running low.",
            entity_type=entity_type,
            details={"source": source},
        )

    @staticmethod
    def mutation_failed(
        entity_type: str,
        action: str,
        label: str,
        error: str,
        entity_id: Optional[str] = None,
        rolled_back: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> Notification:
        return Notification(
            event_type=NotificationEventType.MUTATION_FAILED,
            variant=NotificationVariant.DESTRUCTIVE,
            title=f"Could not {action} {label.lower()}",
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            error_message=error,
            details={"action": action, "rolled_back": rolled_back},
        )

    @staticmethod
    def membership_changed(
        event_type: NotificationEventType,
        title: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> Notification:
        return Notification(
            event_type=event_type,
            variant=NotificationVariant.SUCCESS,
            title=title,
            description=description,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details or {},
        )

    @staticmethod
    def membership_failed(
        action: str,
        error: str,
        error_code: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Notification:
        return Notification(
            event_type=NotificationEventType.MEMBERSHIP_FAILED,
            variant=NotificationVariant.DESTRUCTIVE,
            title=f"Could not {action}",
            entity_type="membership",
            entity_id=entity_id,
            error_message=error,
            details={"action": action, "error_code": error_code},
        )
