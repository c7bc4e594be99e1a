"""
Module: exceptions.py
Description: Error types raised by the webhook delivery subsystem.

Delivery failures themselves are never raised: they are recorded on the
webhook record and retried on schedule. These exceptions cover the store
and configuration problems that callers have to react to.
"""


class WebhookError(Exception):
    """Base class for webhook subsystem errors."""


class PersistenceError(WebhookError):
    """Writing a record's state update failed or lost its claim."""

    def __init__(self, record_id: str, message: str):
        super().__init__(f"{record_id}: {message}")
        self.record_id = record_id
        self.message = message


class StoreUnavailableError(WebhookError):
    """The event log store could not be read."""


class MerchantNotFoundError(WebhookError):
    """No merchant exists for the given identifier."""

