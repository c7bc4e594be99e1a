"""
Module: models
Description: Package initialization for Pydantic data models.

This package contains all data models used by the webhook service:
- WebhookRecord: Delivery state for one event
- MerchantWebhookConfig: Merchant destination and signing secret
- DeliveryOutcome / RetryDecision: Attempt results and next state
- TriggerResponse and log views: API response models

All models are exported here for convenient importing.
"""

from .outcome import (
    DeliveryFailure,
    DeliveryOutcome,
    DeliverySuccess,
    NetworkError,
    RetryDecision,
)
from .record import MerchantWebhookConfig, PendingDelivery, WebhookRecord
from .response import ErrorResponse, TriggerResponse

__all__ = [
    "WebhookRecord",
    "MerchantWebhookConfig",
    "PendingDelivery",
    "DeliveryOutcome",
    "DeliverySuccess",
    "DeliveryFailure",
    "NetworkError",
    "RetryDecision",
    "TriggerResponse",
    "ErrorResponse",
]
