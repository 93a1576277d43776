"""Queue error taxonomy shared by the store, coordinator and API layers.

Every error carries a ``code`` (the payload discriminator returned to clients)
and the HTTP status it maps to.
"""

from __future__ import annotations


class QueueError(Exception):
    """Base class for expected, client-facing queue conditions."""

    code: str = "QueueError"
    status_code: int = 400
    default_message: str = "Queue operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AlreadyQueued(QueueError):
    code = "AlreadyQueued"
    status_code = 409
    default_message = "You are already in the queue for this equipment"


class QueueFull(QueueError):
    code = "QueueFull"
    status_code = 409
    default_message = "Queue is full"


class NotInQueue(QueueError):
    code = "NotInQueue"
    status_code = 404
    default_message = "You are not in the queue for this equipment"


class NotYourTurn(QueueError):
    code = "NotYourTurn"
    status_code = 409
    default_message = "It is not your turn yet"


class ClaimWindowExpired(QueueError):
    code = "ClaimWindowExpired"
    status_code = 409
    default_message = "Your claim window has expired"


class InvalidTransition(QueueError):
    code = "InvalidTransition"
    status_code = 409
    default_message = "Illegal queue status transition"


class DeliveryFailed(QueueError):
    """Notification transport error. Never fails the state transition."""

    code = "DeliveryFailed"
    status_code = 502
    default_message = "Notification delivery failed"
