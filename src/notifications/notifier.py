"""
Notifier

DESIGN DECISION: Every write outcome produces a notification.
This provides:
1. The toast the UI shows ("Task added", "Could not update bill")
2. A structured log line for debugging
3. A short in-memory history tests and diagnostics can inspect

The notifier:
- Is async so subscribers (UI bridges) can await their own work
- Never lets a failing subscriber break the mutation that notified
- Supports correlation IDs to tie a failure to the write that caused it
"""

from collections import deque
from typing import Awaitable, Callable, Optional
from uuid import UUID, uuid4

import structlog

from src.models.notification import (
    Notification,
    NotificationVariant,
)


NotificationListener = Callable[[Notification], Awaitable[None]]


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure structlog for the process.

    JSON lines in production, a readable console renderer for development.
    """
    import logging

    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper()))
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class Notifier:
    """
    Central notification service.

    Sends notifications both to:
    1. The structured log
    2. Every subscriber (toast renderers, test probes)
    """

    def __init__(self, history_size: int = 100):
        """
        Initialize notifier.

        Args:
            history_size: How many recent notifications to keep.
        """
        self._listeners: list[NotificationListener] = []
        self._history: deque[Notification] = deque(maxlen=history_size)
        self._logger = structlog.get_logger("notifications")

    @property
    def history(self) -> list[Notification]:
        """Recent notifications, oldest first."""
        return list(self._history)

    @property
    def failures(self) -> list[Notification]:
        return [n for n in self._history if n.is_failure]

    def clear(self) -> None:
        self._history.clear()

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def notify(self, notification: Notification) -> Notification:
        """
        Publish a notification.

        Always logs. Subscriber failures are logged and swallowed so a
        broken toast renderer can never undo a write.
        """
        log_dict = notification.to_log_dict()

        if notification.variant == NotificationVariant.DESTRUCTIVE:
            self._logger.warning("notification", **log_dict)
        else:
            self._logger.info("notification", **log_dict)

        self._history.append(notification)

        for listener in list(self._listeners):
            try:
                await listener(notification)
            except Exception as e:
                self._logger.error(
                    "notification_listener_failed",
                    error=str(e),
                    notification_id=str(notification.notification_id),
                )

        return notification


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related notifications.

    Use this at the start of a mutation; pass it to the failure
    notification if the mutation is rolled back.
    """
    return uuid4()
