"""
Module: storage
Description: Package initialization for the data persistence layer.

This package contains the event log store used by the webhook service:
- dynamodb: DynamoDB store for webhook records and merchant configuration
"""

from .dynamodb import WebhookStore

__all__ = ["WebhookStore"]
