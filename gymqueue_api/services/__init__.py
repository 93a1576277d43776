"""Services layer - Business logic

Services are initialized with their dependencies and accessed through dependency injection.
"""

from .auth_service import AuthService, Member
from .notifications import (
    LoggingNotificationGateway,
    NotificationDispatcher,
    NotificationGateway,
    PgNotifyNotificationGateway,
    WebhookNotificationGateway,
)
from .queue_coordinator import JoinResult, QueueCoordinator, SweepResult
from .queue_query import PositionView, QueueListingEntry, QueueQueryService, QueueView

__all__ = [
    "AuthService",
    "JoinResult",
    "LoggingNotificationGateway",
    "Member",
    "NotificationDispatcher",
    "NotificationGateway",
    "PgNotifyNotificationGateway",
    "PositionView",
    "QueueCoordinator",
    "QueueListingEntry",
    "QueueQueryService",
    "QueueView",
    "SweepResult",
    "WebhookNotificationGateway",
]
