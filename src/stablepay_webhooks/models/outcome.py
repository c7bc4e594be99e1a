"""
Module: outcome.py
Description: Delivery outcome and retry decision models.

A delivery attempt ends in exactly one of three outcomes. The retry
scheduler turns an outcome into a RetryDecision, which is the set of
record fields the driver persists.

Dependencies: pydantic, datetime, typing
Author: StablePay Webhooks Team
"""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class DeliverySuccess(BaseModel):
    """The endpoint answered with a 2xx status."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"
    status_code: int
    body: str = ""


class DeliveryFailure(BaseModel):
    """The endpoint answered with a non-2xx status."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["failure"] = "failure"
    status_code: int
    body: str = ""


class NetworkError(BaseModel):
    """No response was received (connection, DNS or timeout failure)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["network_error"] = "network_error"
    message: str


DeliveryOutcome = Union[DeliverySuccess, DeliveryFailure, NetworkError]


def outcome_status(outcome: DeliveryOutcome) -> Optional[int]:
    """HTTP status carried by an outcome, None for network errors."""
    if isinstance(outcome, NetworkError):
        return None
    return outcome.status_code


def outcome_text(outcome: DeliveryOutcome) -> str:
    """Response body or error message carried by an outcome."""
    if isinstance(outcome, NetworkError):
        return outcome.message
    return outcome.body


class RetryDecision(BaseModel):
    """
    Next state of a webhook record after one delivery attempt.

    Attributes:
        terminal: True when the record will never be attempted again
        attempts: Attempt count including the attempt just made
        http_status: Status to store (None when no response was received)
        response: Truncated body or error text to store
        delivered_at: Set only when the attempt succeeded
        next_retry_at: Next eligible time, None when terminal
    """

    model_config = ConfigDict(frozen=True)

    terminal: bool
    attempts: int
    http_status: Optional[int] = None
    response: Optional[str] = None
    delivered_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None

    @property
    def delivered(self) -> bool:
        return self.delivered_at is not None

    @property
    def exhausted(self) -> bool:
        return self.terminal and not self.delivered
