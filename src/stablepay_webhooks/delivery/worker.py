"""
Module: delivery/worker.py
Description: Retry driver for pending webhook deliveries.

Polls the event log store for due records, claims each one, signs and
delivers it, and persists the state computed by the retry scheduler.
Runs one batch per invocation; invocation cadence is owned by an external
scheduler (the cron endpoint or an EventBridge-triggered Lambda).
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, NamedTuple

from pydantic import BaseModel, Field

from stablepay_webhooks.config.settings import Settings, settings
from stablepay_webhooks.delivery.push import WebhookDeliveryClient
from stablepay_webhooks.delivery.retry import (
    RetryPolicy,
    compute_next_state,
    configuration_invalid,
)
from stablepay_webhooks.delivery.signer import serialize_payload, sign
from stablepay_webhooks.exceptions import PersistenceError
from stablepay_webhooks.models.outcome import DeliverySuccess
from stablepay_webhooks.models.record import PendingDelivery
from stablepay_webhooks.storage.dynamodb import WebhookStore
from stablepay_webhooks.utils.logger import get_logger
from stablepay_webhooks.utils.metrics import MetricsClient
from stablepay_webhooks.utils.timestamps import utc_now

logger = get_logger(__name__)

MISSING_SECRET_MESSAGE = "webhook secret not configured"


class BatchResult(BaseModel):
    """
    Counters for one driver run.

    Attributes:
        processed: Records for which a delivery was attempted
        succeeded: Attempts that received a 2xx response
        skipped: Records not attempted (no URL, claim lost, invalid config)
        errors: Records whose attempt could not be persisted or raised
    """

    processed: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)


class RecordResult(NamedTuple):
    attempted: bool
    succeeded: bool = False
    error: bool = False


SKIPPED = RecordResult(attempted=False)


class RetryDriver:
    """
    Runs one batch of webhook deliveries.

    The store and delivery client are injected; the driver keeps no state
    between runs. Records within a batch run concurrently up to
    `concurrency`, each guarded by a store-level claim so overlapping
    drivers never dispatch the same record twice.
    """

    def __init__(
        self,
        store: WebhookStore,
        delivery_client: WebhookDeliveryClient,
        policy: RetryPolicy,
        batch_size: int = 100,
        concurrency: int = 5,
        claim_ttl_seconds: int = 120,
        require_webhook_secret: bool = False,
        clock: Callable[[], datetime] = utc_now
    ):
        if batch_size <= 0 or batch_size > 100:
            raise ValueError("batch_size must be between 1 and 100")
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")

        self.store = store
        self.delivery_client = delivery_client
        self.policy = policy
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.claim_ttl_seconds = claim_ttl_seconds
        self.require_webhook_secret = require_webhook_secret
        self.clock = clock

    async def run_once(self) -> BatchResult:
        """
        Process one batch of due webhook records.

        Returns:
            BatchResult with processed/succeeded counts

        Raises:
            StoreUnavailableError: If due records cannot be fetched; no
                record is processed in that case
        """
        pending = await self.store.fetch_due(self.clock(), limit=self.batch_size)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(item: PendingDelivery) -> RecordResult:
            async with semaphore:
                try:
                    return await self.process(item)
                except Exception as e:
                    logger.error(
                        "Unexpected error processing webhook record",
                        record_id=item.record.id,
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True
                    )
                    return RecordResult(attempted=False, error=True)

        results = await asyncio.gather(*(run(item) for item in pending))

        batch = BatchResult(
            processed=sum(1 for r in results if r.attempted),
            succeeded=sum(1 for r in results if r.succeeded),
            skipped=sum(1 for r in results if not r.attempted and not r.error),
            errors=sum(1 for r in results if r.error)
        )

        if batch.processed > 0:
            logger.info(
                "Processed webhook retries",
                fetched=len(pending),
                processed=batch.processed,
                succeeded=batch.succeeded,
                skipped=batch.skipped,
                errors=batch.errors
            )

        return batch

    async def process(self, item: PendingDelivery) -> RecordResult:
        """Claim, sign, deliver and persist a single record."""
        record = item.record

        if not item.webhook_url:
            logger.debug(
                "Merchant has no webhook URL, skipping",
                record_id=record.id,
                merchant_id=record.merchant_id
            )
            return SKIPPED

        claim_token = await self.store.claim(record, self.clock(), self.claim_ttl_seconds)
        if claim_token is None:
            return SKIPPED

        if not item.webhook_secret:
            if self.require_webhook_secret:
                logger.warning(
                    "Merchant has no webhook secret, marking record undeliverable",
                    record_id=record.id,
                    merchant_id=record.merchant_id
                )
                decision = configuration_invalid(record, MISSING_SECRET_MESSAGE, self.policy)
                return await self._persist(record, decision, claim_token, attempted=False)

            logger.warning(
                "Signing webhook with empty secret",
                record_id=record.id,
                merchant_id=record.merchant_id
            )

        body = serialize_payload(record.payload)
        signature = sign(body, item.webhook_secret)

        outcome = await self.delivery_client.deliver(
            item.webhook_url,
            body,
            signature,
            self.clock()
        )

        decision = compute_next_state(record, outcome, self.policy, self.clock())

        if decision.exhausted:
            logger.warning(
                "Webhook max retries reached",
                record_id=record.id,
                merchant_id=record.merchant_id,
                attempts=decision.attempts,
                http_status=decision.http_status
            )
        elif not decision.terminal:
            logger.info(
                "Webhook retry scheduled",
                record_id=record.id,
                attempts=decision.attempts,
                next_retry_at=decision.next_retry_at.isoformat()
            )

        result = await self._persist(record, decision, claim_token, attempted=True)
        # A delivery only counts once its state is saved
        return result._replace(succeeded=isinstance(outcome, DeliverySuccess) and not result.error)

    async def _persist(self, record, decision, claim_token, attempted: bool) -> RecordResult:
        try:
            await self.store.complete_attempt(record, decision, claim_token)
        except PersistenceError as e:
            logger.error(
                "Failed to persist webhook attempt, continuing batch",
                record_id=record.id,
                error=e.message
            )
            return RecordResult(attempted=attempted, error=True)

        return RecordResult(attempted=attempted)


def build_driver(store: WebhookStore, config: Settings = settings) -> RetryDriver:
    """Wire a RetryDriver from application settings."""
    return RetryDriver(
        store=store,
        delivery_client=WebhookDeliveryClient(
            header_prefix=config.webhook_header_prefix,
            timeout_seconds=config.delivery_timeout
        ),
        policy=RetryPolicy.from_settings(config),
        batch_size=config.batch_size,
        concurrency=config.delivery_concurrency,
        claim_ttl_seconds=config.claim_ttl_seconds,
        require_webhook_secret=config.require_webhook_secret
    )


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for scheduled (EventBridge) retry runs.

    Args:
        event: Scheduled event payload (unused)
        context: Lambda context

    Returns:
        Batch counters
    """
    store = WebhookStore(
        table_name=settings.webhook_logs_table_name,
        merchants_table_name=settings.merchants_table_name,
        region_name=settings.aws_region
    )

    try:
        result = asyncio.run(build_driver(store).run_once())
    finally:
        store.close()

    MetricsClient(
        namespace=settings.metrics_namespace,
        region_name=settings.aws_region,
        enabled=settings.metrics_enabled
    ).publish_batch(result.processed, result.succeeded, result.skipped)

    return {
        'processed': result.processed,
        'succeeded': result.succeeded,
        'skipped': result.skipped,
        'errors': result.errors,
        'timestamp': utc_now().isoformat()
    }
