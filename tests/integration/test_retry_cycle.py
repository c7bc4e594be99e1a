"""
Module: test_retry_cycle.py
Description: Integration tests for complete webhook retry cycles.

Runs the real RetryDriver, WebhookStore (moto) and WebhookDeliveryClient
(httpx MockTransport) together, advancing a controllable clock between
runs to walk records through the backoff schedule.
"""

import json
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from stablepay_webhooks.delivery.enqueue import enqueue_webhook
from stablepay_webhooks.delivery.push import WebhookDeliveryClient
from stablepay_webhooks.delivery.retry import RetryPolicy
from stablepay_webhooks.delivery.signer import sign
from stablepay_webhooks.delivery.worker import RetryDriver, handler

pytestmark = pytest.mark.integration


class Clock:
    """Mutable clock shared by the driver and the test."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class Merchant:
    """Records requests and answers with a scripted list of statuses."""

    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, text="ok" if status < 300 else "unavailable")


@pytest.fixture
def clock(fixed_now):
    return Clock(fixed_now)


@pytest.fixture
def make_driver(store, clock):
    def _make(merchant):
        return RetryDriver(
            store=store,
            delivery_client=WebhookDeliveryClient(transport=httpx.MockTransport(merchant)),
            policy=RetryPolicy(),
            clock=clock
        )
    return _make


@pytest_asyncio.fixture
async def enqueued(store, add_merchant, clock):
    add_merchant()
    return await enqueue_webhook(
        store, "mer_test_001", "order.confirmed", {"orderId": "ord_123", "amount": 25.5},
        clock=clock
    )


class TestRetryCycle:
    """End-to-end retry scenarios."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, store, make_driver, enqueued, clock):
        merchant = Merchant([200])

        result = await make_driver(merchant).run_once()

        assert result.processed == 1
        assert result.succeeded == 1

        request = merchant.requests[0]
        assert str(request.url) == "https://merchant.example.com/webhooks"
        assert json.loads(request.content) == enqueued.payload
        assert request.headers["X-StablePay-Signature"] == sign(request.content, "whsec_test_secret")

        stored = await store.get_record(enqueued.id)
        assert stored.attempts == 1
        assert stored.http_status == 200
        assert stored.delivered_at == clock.now
        assert stored.next_retry_at is None

    @pytest.mark.asyncio
    async def test_exhausts_after_five_failures(self, store, make_driver, enqueued, clock):
        merchant = Merchant([503] * 10)
        driver = make_driver(merchant)
        expected_delays = [60, 300, 900, 3600]

        for attempt, delay in enumerate(expected_delays, start=1):
            result = await driver.run_once()
            assert result.processed == 1

            stored = await store.get_record(enqueued.id)
            assert stored.attempts == attempt
            assert stored.next_retry_at == clock.now + timedelta(seconds=delay)

            # Not due again before the backoff elapses
            assert (await driver.run_once()).processed == 0

            clock.advance(seconds=delay)

        result = await driver.run_once()
        assert result.processed == 1

        stored = await store.get_record(enqueued.id)
        assert stored.attempts == 5
        assert stored.http_status == 503
        assert stored.response == "unavailable"
        assert stored.delivered_at is None
        assert stored.next_retry_at is None

        clock.advance(days=30)
        assert (await driver.run_once()).processed == 0
        assert len(merchant.requests) == 5

    @pytest.mark.asyncio
    async def test_success_after_failures(self, store, make_driver, enqueued, clock):
        merchant = Merchant([500, 500, 200])
        driver = make_driver(merchant)

        await driver.run_once()
        clock.advance(seconds=60)
        await driver.run_once()
        clock.advance(seconds=300)
        result = await driver.run_once()

        assert result.succeeded == 1
        stored = await store.get_record(enqueued.id)
        assert stored.attempts == 3
        assert stored.http_status == 200
        assert stored.delivered_at == clock.now

        clock.advance(days=1)
        assert (await driver.run_once()).processed == 0

    @pytest.mark.asyncio
    async def test_timeout_is_recorded(self, store, enqueued, clock):
        def timeout_handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        driver = RetryDriver(
            store=store,
            delivery_client=WebhookDeliveryClient(transport=httpx.MockTransport(timeout_handler)),
            policy=RetryPolicy(),
            clock=clock
        )

        await driver.run_once()

        stored = await store.get_record(enqueued.id)
        assert stored.attempts == 1
        assert stored.http_status is None
        assert stored.response == "timeout"
        assert stored.next_retry_at == clock.now + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_missing_url_leaves_record_untouched(
        self, store, make_driver, add_merchant, make_record, insert_record
    ):
        add_merchant(webhook_url=None)
        record = insert_record(make_record(attempts=2))
        merchant = Merchant([])

        result = await make_driver(merchant).run_once()

        assert result.processed == 0
        assert merchant.requests == []
        assert await store.get_record(record.id) == record

    @pytest.mark.asyncio
    async def test_backlog_without_url_does_not_block_delivery(
        self, store, make_driver, add_merchant, make_record, insert_record, fixed_now
    ):
        add_merchant()
        add_merchant(merchant_id="mer_no_url", webhook_url=None)
        for i in range(100):
            insert_record(make_record(
                merchant_id="mer_no_url",
                next_retry_at=fixed_now - timedelta(days=1, seconds=i)
            ))
        deliverable = insert_record(make_record())
        merchant = Merchant([200])

        result = await make_driver(merchant).run_once()

        assert result.processed == 1
        assert result.succeeded == 1
        assert len(merchant.requests) == 1
        stored = await store.get_record(deliverable.id)
        assert stored.attempts == 1
        assert stored.delivered_at is not None

    @pytest.mark.asyncio
    async def test_stale_fetch_cannot_deliver_twice(self, store, make_driver, enqueued, clock):
        merchant = Merchant([200, 200])
        first = make_driver(merchant)
        second = make_driver(merchant)

        stale = await store.fetch_due(clock.now, limit=100)
        await first.run_once()

        outcome = await second.process(stale[0])

        assert outcome.attempted is False
        assert len(merchant.requests) == 1
        assert (await store.get_record(enqueued.id)).attempts == 1

    @pytest.mark.asyncio
    async def test_manual_retry_gives_one_more_attempt(self, store, make_driver, make_record, insert_record,
                                                       add_merchant, clock):
        add_merchant()
        record = insert_record(make_record(attempts=5, next_retry_at=None, http_status=503))
        merchant = Merchant([200])

        await store.schedule_immediate_retry(record.id, "mer_test_001", clock.now)
        result = await make_driver(merchant).run_once()

        assert result.succeeded == 1
        stored = await store.get_record(record.id)
        assert stored.attempts == 6
        assert stored.delivered_at == clock.now


class TestScheduledHandler:
    """Test cases for the scheduled Lambda entry point."""

    def test_empty_run(self, tables, monkeypatch):
        from stablepay_webhooks.config.settings import settings
        monkeypatch.setattr(settings, "webhook_logs_table_name", "test-webhook-logs")
        monkeypatch.setattr(settings, "merchants_table_name", "test-merchants")
        monkeypatch.setattr(settings, "aws_region", "us-east-1")
        monkeypatch.setattr(settings, "metrics_enabled", False)

        result = handler({}, None)

        assert result["processed"] == 0
        assert result["succeeded"] == 0
        assert "timestamp" in result
