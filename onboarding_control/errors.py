"""Sequence runner errors.

Split by how the runner recovers from them: enrollment rejections are
swallowed by the trigger handler, delivery failures are retried or skipped
per step, and record-keeping failures stop the run at its last checkpoint.
"""


class SequenceError(Exception):
    """Base class for sequence runner errors."""


class EmptySequence(SequenceError):
    """The user has no steps to run. Terminal, never retried."""

    def __init__(self, user_id: str):
        super().__init__(f"No active sequence for user {user_id}")
        self.user_id = user_id


class AlreadyEnrolled(SequenceError):
    """The user already has a running sequence run."""

    def __init__(self, user_id: str, run_id: str):
        super().__init__(f"User {user_id} already has running sequence run {run_id}")
        self.user_id = user_id
        self.run_id = run_id


class InvalidStep(SequenceError, ValueError):
    """A sequence step is malformed (bad day, missing subject or body)."""


class DeliveryFailure(SequenceError):
    """Base class for delivery adapter failures."""

    permanent = False

    def __init__(self, message: str, delivery_error: Exception | None = None):
        super().__init__(message)
        self.delivery_error = delivery_error


class TransientDeliveryFailure(DeliveryFailure):
    """Provider unreachable or rate limited. The step is retried with backoff."""


class PermanentDeliveryFailure(DeliveryFailure):
    """Bad address or content. The step is marked failed and the run moves on."""

    permanent = True


class RecordKeepingError(SequenceError):
    """An essential event could not be made durable.

    Raised after the inline retries are exhausted. The run stays at its last
    checkpoint so the next scheduler tick picks it up again.
    """

    def __init__(self, event_type: str, user_id: str, cause: Exception | None = None):
        super().__init__(f"Could not record {event_type} for user {user_id}: {cause}")
        self.event_type = event_type
        self.user_id = user_id
        self.cause = cause
