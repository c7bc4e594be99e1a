"""
Module: conftest.py
Description: Shared pytest fixtures for webhook service tests.

Provides reusable fixtures for the DynamoDB store, merchant configuration,
webhook records and a fixed clock. Uses moto for AWS service mocking to
enable fast, isolated tests.
"""

from datetime import datetime, timezone

import boto3
import pytest
from moto import mock_aws

from stablepay_webhooks.config.settings import settings
from stablepay_webhooks.models.record import MerchantWebhookConfig, WebhookRecord
from stablepay_webhooks.storage.dynamodb import WebhookStore, record_to_item

TEST_REGION = "us-east-1"
LOGS_TABLE = "test-webhook-logs"
MERCHANTS_TABLE = "test-merchants"
MERCHANT_ID = "mer_test_001"
WEBHOOK_URL = "https://merchant.example.com/webhooks"
WEBHOOK_SECRET = "whsec_test_secret"
FIXED_NOW = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)


@pytest.fixture
def fixed_now():
    """A fixed UTC instant used as 'now' by clocks in tests."""
    return FIXED_NOW


@pytest.fixture
def cron_secret(monkeypatch):
    """Configure the bearer secret expected by the trigger."""
    monkeypatch.setattr(settings, "cron_secret", "cron_test_secret")
    return "cron_test_secret"


@pytest.fixture
def aws():
    """Activate moto for the duration of a test."""
    with mock_aws():
        yield


@pytest.fixture
def tables(aws):
    """
    Create the webhook logs and merchants tables.

    Mirrors the production schema, including the sparse RetryIndex and
    the MerchantIndex used for log listing.
    """
    dynamodb = boto3.resource('dynamodb', region_name=TEST_REGION)

    logs_table = dynamodb.create_table(
        TableName=LOGS_TABLE,
        KeySchema=[{'AttributeName': 'id', 'KeyType': 'HASH'}],
        AttributeDefinitions=[
            {'AttributeName': 'id', 'AttributeType': 'S'},
            {'AttributeName': 'retry_queue', 'AttributeType': 'S'},
            {'AttributeName': 'next_retry_at', 'AttributeType': 'S'},
            {'AttributeName': 'merchant_id', 'AttributeType': 'S'},
            {'AttributeName': 'created_at', 'AttributeType': 'S'}
        ],
        GlobalSecondaryIndexes=[
            {
                'IndexName': 'RetryIndex',
                'KeySchema': [
                    {'AttributeName': 'retry_queue', 'KeyType': 'HASH'},
                    {'AttributeName': 'next_retry_at', 'KeyType': 'RANGE'}
                ],
                'Projection': {'ProjectionType': 'ALL'}
            },
            {
                'IndexName': 'MerchantIndex',
                'KeySchema': [
                    {'AttributeName': 'merchant_id', 'KeyType': 'HASH'},
                    {'AttributeName': 'created_at', 'KeyType': 'RANGE'}
                ],
                'Projection': {'ProjectionType': 'ALL'}
            }
        ],
        BillingMode='PAY_PER_REQUEST'
    )

    merchants_table = dynamodb.create_table(
        TableName=MERCHANTS_TABLE,
        KeySchema=[{'AttributeName': 'merchant_id', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'merchant_id', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )

    return logs_table, merchants_table


@pytest.fixture
def logs_table(tables):
    return tables[0]


@pytest.fixture
def merchants_table(tables):
    return tables[1]


@pytest.fixture
def store(tables):
    """Provide a WebhookStore bound to the mocked tables."""
    webhook_store = WebhookStore(
        table_name=LOGS_TABLE,
        merchants_table_name=MERCHANTS_TABLE,
        region_name=TEST_REGION
    )
    yield webhook_store
    webhook_store.close()


@pytest.fixture
def add_merchant(merchants_table):
    """Factory storing a merchant row in the mocked merchants table."""

    def _add(
        merchant_id=MERCHANT_ID,
        webhook_url=WEBHOOK_URL,
        webhook_secret=WEBHOOK_SECRET,
        webhook_enabled=True,
        webhook_events=None
    ):
        item = {
            'merchant_id': merchant_id,
            'webhook_enabled': webhook_enabled,
            'webhook_events': webhook_events or []
        }
        if webhook_url is not None:
            item['webhook_url'] = webhook_url
        if webhook_secret is not None:
            item['webhook_secret'] = webhook_secret
        merchants_table.put_item(Item=item)
        return item

    return _add


@pytest.fixture
def merchant_config():
    """A fully configured merchant."""
    return MerchantWebhookConfig(
        merchant_id=MERCHANT_ID,
        webhook_url=WEBHOOK_URL,
        webhook_secret=WEBHOOK_SECRET
    )


@pytest.fixture
def make_record(fixed_now):
    """Factory for WebhookRecord instances that are due at fixed_now."""
    counter = {'n': 0}

    def _make(**overrides):
        counter['n'] += 1
        fields = {
            'id': f"whl_{counter['n']:016x}",
            'merchant_id': MERCHANT_ID,
            'event_type': 'order.confirmed',
            'payload': {
                'event': 'order.confirmed',
                'timestamp': '2024-01-15T10:29:00.000000+00:00',
                'data': {'orderId': 'ord_123', 'amount': 25.5}
            },
            'url': WEBHOOK_URL,
            'attempts': 0,
            'next_retry_at': fixed_now,
            'created_at': fixed_now
        }
        fields.update(overrides)
        return WebhookRecord(**fields)

    return _make


@pytest.fixture
def insert_record(logs_table):
    """Write a record straight into the mocked logs table."""

    def _insert(record):
        logs_table.put_item(Item=record_to_item(record))
        return record

    return _insert
