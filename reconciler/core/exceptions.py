"""Failure taxonomy for webhook reconciliation.

Re-delivery of an already processed event is not an error: it is reported
as an ``already_processed`` result by the reconciler.
"""


class ReconciliationError(Exception):
    """Base class for failures while reconciling a provider event."""

    def __init__(self, message: str, event_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.event_id = event_id


class SignatureVerificationError(ReconciliationError):
    """Webhook signature did not verify. Nothing was read or written."""


class ValidationError(ReconciliationError):
    """Event payload is missing fields required to act on it."""


class ProviderAPIError(ReconciliationError):
    """A call to the billing provider failed."""

    def __init__(
        self,
        message: str,
        event_id: str | None = None,
        code: str | None = None,
    ):
        super().__init__(message, event_id)
        self.code = code


class PersistenceError(ReconciliationError):
    """A write to the subscription store could not be committed."""
