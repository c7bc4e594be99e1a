"""
Module: delivery/retry.py
Description: Retry scheduling for webhook delivery.

Turns the outcome of one delivery attempt into the record's next state
using a fixed backoff table: 1m, 5m, 15m, 1h, 2h by default, capped at
five attempts. The scheduler is a pure function of its inputs.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stablepay_webhooks.models.outcome import (
    DeliveryOutcome,
    DeliverySuccess,
    RetryDecision,
    outcome_status,
    outcome_text,
)
from stablepay_webhooks.models.record import WebhookRecord

DEFAULT_RETRY_DELAYS = (60, 300, 900, 3600, 7200)
DEFAULT_MAX_ATTEMPTS = 5
RESPONSE_MAX_LENGTH = 1000


class RetryPolicy(BaseModel):
    """
    Backoff table and attempt cap.

    Attributes:
        delays: Seconds to wait after the 1st, 2nd, ... failed attempt;
            attempts beyond the table reuse its last entry
        max_attempts: Failed attempts after which the record is terminal
        response_max_length: Characters of body/error text kept
    """

    model_config = ConfigDict(frozen=True)

    delays: Tuple[int, ...] = Field(default=DEFAULT_RETRY_DELAYS, min_length=1)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    response_max_length: int = Field(default=RESPONSE_MAX_LENGTH, ge=1)

    @field_validator('delays')
    @classmethod
    def validate_delays(cls, v: Tuple[int, ...]) -> Tuple[int, ...]:
        if any(delay <= 0 for delay in v):
            raise ValueError("delays must be positive")
        return v

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            delays=tuple(settings.retry_delays),
            max_attempts=settings.max_retries,
            response_max_length=settings.response_max_length
        )

    def delay_for(self, attempts: int) -> timedelta:
        """Delay before the next attempt after `attempts` failed attempts."""
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        index = min(attempts - 1, len(self.delays) - 1)
        return timedelta(seconds=self.delays[index])

    def truncate(self, text: Optional[str]) -> str:
        return (text or "")[:self.response_max_length]


def compute_next_state(
    record: WebhookRecord,
    outcome: DeliveryOutcome,
    policy: RetryPolicy,
    now: datetime
) -> RetryDecision:
    """
    Compute a record's next state after one delivery attempt.

    Every attempt, successful or not, increments the attempt count once.
    A 2xx outcome is terminal. A failed attempt is terminal when the new
    count reaches policy.max_attempts; otherwise the next attempt is
    scheduled after policy.delay_for(new count).

    Args:
        record: Record as it was before the attempt
        outcome: Result of the attempt
        policy: Backoff table and attempt cap
        now: Time of the decision

    Returns:
        RetryDecision with the fields to persist
    """
    attempts = record.attempts + 1
    http_status = outcome_status(outcome)
    response = policy.truncate(outcome_text(outcome))

    if isinstance(outcome, DeliverySuccess):
        return RetryDecision(
            terminal=True,
            attempts=attempts,
            http_status=http_status,
            response=response,
            delivered_at=now,
            next_retry_at=None
        )

    if attempts >= policy.max_attempts:
        return RetryDecision(
            terminal=True,
            attempts=attempts,
            http_status=http_status,
            response=response,
            next_retry_at=None
        )

    return RetryDecision(
        terminal=False,
        attempts=attempts,
        http_status=http_status,
        response=response,
        next_retry_at=now + policy.delay_for(attempts)
    )


def configuration_invalid(record: WebhookRecord, reason: str, policy: RetryPolicy) -> RetryDecision:
    """Terminal decision for a record that cannot be delivered as configured."""
    return RetryDecision(
        terminal=True,
        attempts=record.attempts,
        http_status=None,
        response=policy.truncate(reason),
        next_retry_at=None
    )
