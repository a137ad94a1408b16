"""Notification package."""

from src.notifications.notifier import (
    Notifier,
    configure_logging,
    create_correlation_id,
)

__all__ = ["Notifier", "configure_logging", "create_correlation_id"]
