"""
Module: record.py
Description: Webhook record and merchant configuration models.

Defines the WebhookRecord that tracks one event's delivery attempts and
the read-only merchant webhook configuration it is delivered with.

Key Components:
- WebhookRecord: Delivery state for one event (attempts, last response, schedule)
- MerchantWebhookConfig: Destination URL, signing secret, subscriptions
- PendingDelivery: A due record joined with its merchant configuration
- generate_record_id(): Identifier factory

Dependencies: pydantic, datetime, typing, secrets
Author: StablePay Webhooks Team
"""

import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


WEBHOOK_EVENT_TYPES = (
    "order.created",
    "order.confirmed",
    "order.expired",
    "refund.requested",
    "refund.processed",
    "invoice.created",
    "invoice.sent",
    "invoice.viewed",
    "invoice.paid",
    "invoice.overdue",
    "invoice.cancelled",
    "receipt.created",
    "receipt.sent",
)


def generate_record_id() -> str:
    """Generate a webhook record identifier (whl_ + 16 hex chars)."""
    return f"whl_{secrets.token_hex(8)}"


class WebhookRecord(BaseModel):
    """
    Delivery state for a single webhook event.

    A record is created once per event with attempts=0 and next_retry_at
    set to the creation time. It is terminal when delivered_at is set or
    when next_retry_at is absent.

    Attributes:
        id: Unique record identifier
        merchant_id: Owning merchant
        event_type: Event name (e.g. 'order.confirmed')
        payload: Event body sent verbatim to the merchant
        url: Destination URL at enqueue time (informational)
        attempts: Delivery attempts made so far
        http_status: Last observed response status (nullable)
        response: Truncated last response body or error text (nullable)
        delivered_at: First successful delivery time (nullable)
        next_retry_at: Next eligible attempt time (nullable)
        created_at: Record creation time
        claimed_until: Expiry of the current claim lease (nullable)
        claim_token: Token of the driver holding the claim (nullable)
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(
        ...,
        pattern=r"^whl_[a-z0-9]{16}$",
        description="Unique record identifier"
    )
    merchant_id: str = Field(..., min_length=1, description="Owning merchant")
    event_type: str = Field(..., min_length=1, max_length=100, description="Event name")
    payload: Dict[str, Any] = Field(..., description="Event body")
    url: Optional[str] = Field(default=None, description="Destination at enqueue time")
    attempts: int = Field(default=0, ge=0, description="Delivery attempts made")
    http_status: Optional[int] = Field(default=None, description="Last response status")
    response: Optional[str] = Field(default=None, description="Last response body or error")
    delivered_at: Optional[datetime] = Field(default=None, description="Delivery timestamp")
    next_retry_at: Optional[datetime] = Field(default=None, description="Next attempt time")
    created_at: datetime = Field(..., description="Creation timestamp")
    claimed_until: Optional[datetime] = Field(default=None, description="Claim lease expiry")
    claim_token: Optional[str] = Field(default=None, description="Claim owner token")

    @property
    def is_delivered(self) -> bool:
        return self.delivered_at is not None

    @property
    def is_terminal(self) -> bool:
        """Delivered, or no further retry scheduled."""
        return self.is_delivered or self.next_retry_at is None

    def is_due(self, now: datetime) -> bool:
        """Eligible for a delivery attempt at `now`."""
        if self.is_terminal:
            return False
        if self.claimed_until is not None and self.claimed_until > now:
            return False
        return self.next_retry_at <= now


class MerchantWebhookConfig(BaseModel):
    """
    Merchant webhook settings, read-only for this subsystem.

    Attributes:
        merchant_id: Merchant identifier
        webhook_url: Destination URL (nullable)
        webhook_secret: HMAC signing key (nullable, may be empty)
        webhook_enabled: Whether new events are enqueued for the merchant
        webhook_events: Subscribed event types; empty means all
    """

    merchant_id: str = Field(..., min_length=1)
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_enabled: bool = True
    webhook_events: List[str] = Field(default_factory=list)

    @field_validator('webhook_url')
    @classmethod
    def validate_webhook_url(cls, v: Optional[str]) -> Optional[str]:
        """Blank URLs are treated as not configured."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(('http://', 'https://')):
            raise ValueError("webhook_url must be a valid HTTP/HTTPS URL")
        return v

    @property
    def has_destination(self) -> bool:
        return self.webhook_url is not None

    def subscribes_to(self, event_type: str) -> bool:
        return not self.webhook_events or event_type in self.webhook_events


class PendingDelivery(BaseModel):
    """A due webhook record joined with its merchant's configuration."""

    record: WebhookRecord
    merchant: Optional[MerchantWebhookConfig] = None

    @property
    def webhook_url(self) -> Optional[str]:
        return self.merchant.webhook_url if self.merchant else None

    @property
    def webhook_secret(self) -> Optional[str]:
        return self.merchant.webhook_secret if self.merchant else None
