"""Enrollment trigger — fans membership activations out to registered handlers."""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

EnrollmentHandler = Callable[[str, str], Any]


class EnrollmentTrigger:
    """In-process source of "enrollment-eligible" events.

    Webhook handlers call ``emit``; each registered callback receives every
    event exactly once, in registration order.
    """

    def __init__(self):
        self._handlers: list[EnrollmentHandler] = []

    def on_enrollment(self, callback: EnrollmentHandler) -> EnrollmentHandler:
        self._handlers.append(callback)
        return callback

    def emit(self, user_id: str, contact_address: str) -> list:
        """Deliver one enrollment event. Returns each handler's result."""
        if not self._handlers:
            logger.warning("Enrollment for %s dropped: no handlers registered", user_id)
        return [handler(user_id, contact_address) for handler in self._handlers]
