"""
Module: dependencies.py
Description: FastAPI dependencies shared by the route handlers.

The store is created once at application startup (see main.py) and read
from app.state; handlers never construct their own store.
"""

from fastapi import Depends, Request

from stablepay_webhooks.config.settings import settings
from stablepay_webhooks.delivery.worker import RetryDriver, build_driver
from stablepay_webhooks.storage.dynamodb import WebhookStore
from stablepay_webhooks.utils.metrics import MetricsClient


def get_store(request: Request) -> WebhookStore:
    """Dependency returning the process-wide webhook store."""
    return request.app.state.store


def get_driver(store: WebhookStore = Depends(get_store)) -> RetryDriver:
    """Dependency building a retry driver around the shared store."""
    return build_driver(store, settings)


def get_metrics_client() -> MetricsClient:
    """
    Dependency to get CloudWatch metrics client.

    Creates and returns a configured MetricsClient instance
    for publishing custom metrics.
    """
    return MetricsClient(
        namespace=settings.metrics_namespace,
        region_name=settings.aws_region,
        enabled=settings.metrics_enabled
    )
