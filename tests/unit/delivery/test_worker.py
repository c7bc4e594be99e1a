"""
Module: test_worker.py
Description: Unit tests for the retry driver.

The store and delivery client are replaced with AsyncMocks so each test
controls fetch results, claim outcomes and delivery outcomes directly.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from stablepay_webhooks.delivery.retry import RetryPolicy
from stablepay_webhooks.delivery.signer import serialize_payload, sign
from stablepay_webhooks.delivery.worker import BatchResult, RetryDriver, build_driver
from stablepay_webhooks.exceptions import PersistenceError, StoreUnavailableError
from stablepay_webhooks.models.outcome import DeliveryFailure, DeliverySuccess, NetworkError
from stablepay_webhooks.models.record import MerchantWebhookConfig, PendingDelivery

MERCHANT_ID = "mer_test_001"
WEBHOOK_URL = "https://merchant.example.com/webhooks"
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def mock_store():
    store = AsyncMock()
    store.fetch_due.return_value = []
    store.claim.return_value = "claim-token"
    store.complete_attempt.return_value = None
    return store


@pytest.fixture
def mock_delivery():
    delivery = AsyncMock()
    delivery.deliver.return_value = DeliverySuccess(status_code=200, body="ok")
    return delivery


@pytest.fixture
def driver(mock_store, mock_delivery, fixed_now):
    return RetryDriver(
        store=mock_store,
        delivery_client=mock_delivery,
        policy=RetryPolicy(),
        clock=lambda: fixed_now
    )


@pytest.fixture
def pending(make_record, merchant_config):
    def _pending(merchant=merchant_config, **overrides):
        return PendingDelivery(record=make_record(**overrides), merchant=merchant)
    return _pending


class TestRetryDriver:
    """Test cases for RetryDriver.run_once."""

    def test_invalid_configuration(self, mock_store, mock_delivery):
        with pytest.raises(ValueError, match="batch_size must be between 1 and 100"):
            RetryDriver(mock_store, mock_delivery, RetryPolicy(), batch_size=101)

        with pytest.raises(ValueError, match="concurrency must be positive"):
            RetryDriver(mock_store, mock_delivery, RetryPolicy(), concurrency=0)

    @pytest.mark.asyncio
    async def test_empty_batch(self, driver, mock_store, fixed_now):
        result = await driver.run_once()

        assert result == BatchResult()
        mock_store.fetch_due.assert_awaited_once_with(fixed_now, limit=100)

    @pytest.mark.asyncio
    async def test_successful_delivery(self, driver, mock_store, mock_delivery, pending, fixed_now):
        item = pending(attempts=2)
        mock_store.fetch_due.return_value = [item]

        result = await driver.run_once()

        assert result.processed == 1
        assert result.succeeded == 1

        body = serialize_payload(item.record.payload)
        mock_delivery.deliver.assert_awaited_once_with(
            WEBHOOK_URL, body, sign(body, WEBHOOK_SECRET), fixed_now
        )

        record, decision, token = mock_store.complete_attempt.await_args.args
        assert record.id == item.record.id
        assert token == "claim-token"
        assert decision.attempts == 3
        assert decision.delivered_at == fixed_now
        assert decision.http_status == 200
        assert decision.response == "ok"
        assert decision.next_retry_at is None

    @pytest.mark.asyncio
    async def test_first_attempt_timeout_schedules_retry(
        self, driver, mock_store, mock_delivery, pending, fixed_now
    ):
        mock_store.fetch_due.return_value = [pending(attempts=0)]
        mock_delivery.deliver.return_value = NetworkError(message="timeout")

        result = await driver.run_once()

        assert result.processed == 1
        assert result.succeeded == 0

        decision = mock_store.complete_attempt.await_args.args[1]
        assert decision.attempts == 1
        assert decision.http_status is None
        assert decision.response == "timeout"
        assert decision.next_retry_at == fixed_now + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_exhausting_attempts(self, driver, mock_store, mock_delivery, pending):
        mock_store.fetch_due.return_value = [pending(attempts=4)]
        mock_delivery.deliver.return_value = DeliveryFailure(status_code=503, body="down")

        result = await driver.run_once()

        assert result.processed == 1
        decision = mock_store.complete_attempt.await_args.args[1]
        assert decision.attempts == 5
        assert decision.http_status == 503
        assert decision.next_retry_at is None
        assert decision.terminal is True

    @pytest.mark.asyncio
    async def test_merchant_without_url_is_skipped(self, driver, mock_store, mock_delivery, pending):
        no_url = MerchantWebhookConfig(merchant_id=MERCHANT_ID, webhook_url=None)
        mock_store.fetch_due.return_value = [pending(merchant=no_url), pending(merchant=None)]

        result = await driver.run_once()

        assert result.processed == 0
        assert result.skipped == 2
        mock_store.claim.assert_not_awaited()
        mock_delivery.deliver.assert_not_awaited()
        mock_store.complete_attempt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_claim_is_skipped(self, driver, mock_store, mock_delivery, pending):
        mock_store.fetch_due.return_value = [pending()]
        mock_store.claim.return_value = None

        result = await driver.run_once()

        assert result.processed == 0
        assert result.skipped == 1
        mock_delivery.deliver.assert_not_awaited()
        mock_store.complete_attempt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persistence_error_does_not_abort_batch(
        self, driver, mock_store, mock_delivery, pending
    ):
        first, second, third = pending(), pending(), pending()
        mock_store.fetch_due.return_value = [first, second, third]
        mock_store.complete_attempt.side_effect = [
            None,
            PersistenceError(second.record.id, "claim lost before update"),
            None,
        ]

        result = await driver.run_once()

        assert result.processed == 3
        assert result.succeeded == 2
        assert result.errors == 1
        assert mock_store.complete_attempt.await_count == 3

    @pytest.mark.asyncio
    async def test_unsaved_success_is_not_counted(self, driver, mock_store, mock_delivery, pending):
        item = pending()
        mock_store.fetch_due.return_value = [item]
        mock_store.complete_attempt.side_effect = PersistenceError(item.record.id, "update failed")

        result = await driver.run_once()

        mock_delivery.deliver.assert_awaited_once()
        assert result.processed == 1
        assert result.succeeded == 0
        assert result.errors == 1

    @pytest.mark.asyncio
    async def test_unexpected_record_error_is_isolated(
        self, driver, mock_store, mock_delivery, pending
    ):
        mock_store.fetch_due.return_value = [pending(), pending()]
        mock_store.claim.side_effect = [RuntimeError("boom"), "claim-token"]

        result = await driver.run_once()

        assert result.processed == 1
        assert result.errors == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self, driver, mock_store, mock_delivery):
        mock_store.fetch_due.side_effect = StoreUnavailableError("fetch failed")

        with pytest.raises(StoreUnavailableError):
            await driver.run_once()

        mock_delivery.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_secret_is_signed_with_empty_key(
        self, driver, mock_store, mock_delivery, pending
    ):
        no_secret = MerchantWebhookConfig(merchant_id=MERCHANT_ID, webhook_url=WEBHOOK_URL)
        item = pending(merchant=no_secret)
        mock_store.fetch_due.return_value = [item]

        result = await driver.run_once()

        assert result.processed == 1
        body = serialize_payload(item.record.payload)
        assert mock_delivery.deliver.await_args.args[2] == sign(body, "")

    @pytest.mark.asyncio
    async def test_required_secret_marks_record_undeliverable(
        self, mock_store, mock_delivery, pending, fixed_now
    ):
        driver = RetryDriver(
            store=mock_store,
            delivery_client=mock_delivery,
            policy=RetryPolicy(),
            require_webhook_secret=True,
            clock=lambda: fixed_now
        )
        no_secret = MerchantWebhookConfig(merchant_id=MERCHANT_ID, webhook_url=WEBHOOK_URL)
        mock_store.fetch_due.return_value = [pending(merchant=no_secret, attempts=1)]

        result = await driver.run_once()

        assert result.processed == 0
        assert result.skipped == 1
        mock_delivery.deliver.assert_not_awaited()
        decision = mock_store.complete_attempt.await_args.args[1]
        assert decision.terminal is True
        assert decision.attempts == 1
        assert decision.response == "webhook secret not configured"

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, mock_store, pending, fixed_now):
        in_flight = 0
        peak = 0

        async def slow_deliver(url, payload, signature, timestamp):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return DeliverySuccess(status_code=200)

        delivery = MagicMock()
        delivery.deliver = slow_deliver
        mock_store.fetch_due.return_value = [pending() for _ in range(10)]

        driver = RetryDriver(
            store=mock_store,
            delivery_client=delivery,
            policy=RetryPolicy(),
            concurrency=3,
            clock=lambda: fixed_now
        )

        result = await driver.run_once()

        assert result.processed == 10
        assert peak <= 3

    def test_build_driver_from_settings(self, mock_store):
        from stablepay_webhooks.config.settings import Settings

        config = Settings(
            webhook_header_prefix="Acme",
            delivery_timeout=10,
            retry_delays=[5, 10],
            max_retries=3,
            batch_size=25,
            delivery_concurrency=2
        )

        driver = build_driver(mock_store, config)

        assert driver.batch_size == 25
        assert driver.concurrency == 2
        assert driver.policy.delays == (5, 10)
        assert driver.policy.max_attempts == 3
        assert driver.delivery_client.signature_header == "X-Acme-Signature"
        assert driver.delivery_client.timeout_seconds == 10
