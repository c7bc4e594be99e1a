"""
Module: delivery/enqueue.py
Description: Record creation for new webhook events.

Event producers (order, refund, invoice and receipt flows) call
enqueue_webhook() when a business event happens. The record is stored as
immediately due; the retry driver performs the first delivery attempt.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from stablepay_webhooks.exceptions import MerchantNotFoundError
from stablepay_webhooks.models.record import WebhookRecord, generate_record_id
from stablepay_webhooks.storage.dynamodb import WebhookStore
from stablepay_webhooks.utils.logger import get_logger
from stablepay_webhooks.utils.timestamps import to_iso, utc_now

logger = get_logger(__name__)


def build_envelope(event_type: str, data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Wrap event data in the payload shape merchants receive."""
    return {
        'event': event_type,
        'timestamp': to_iso(now),
        'data': data,
    }


async def enqueue_webhook(
    store: WebhookStore,
    merchant_id: str,
    event_type: str,
    data: Dict[str, Any],
    clock: Callable[[], datetime] = utc_now,
    respect_subscriptions: bool = True
) -> Optional[WebhookRecord]:
    """
    Create a webhook record for a merchant event.

    Nothing is stored when the merchant has no URL, has webhooks disabled,
    or does not subscribe to the event type.

    Args:
        store: Event log store
        merchant_id: Merchant to notify
        event_type: Event name (e.g. 'order.confirmed')
        data: Event data placed under the payload's 'data' key
        clock: Time source
        respect_subscriptions: Apply the merchant's event subscription filter

    Returns:
        The stored record, or None when the event is not delivered

    Raises:
        MerchantNotFoundError: If the merchant does not exist
        PersistenceError: If the record cannot be stored
    """
    if not event_type or not isinstance(event_type, str):
        raise ValueError("event_type must be a non-empty string")

    merchant = await store.get_merchant_config(merchant_id)
    if merchant is None:
        raise MerchantNotFoundError(merchant_id)

    if not merchant.webhook_enabled or not merchant.has_destination:
        logger.debug("Webhook not configured or disabled", merchant_id=merchant_id, event_type=event_type)
        return None

    if respect_subscriptions and not merchant.subscribes_to(event_type):
        logger.debug("Merchant not subscribed to event", merchant_id=merchant_id, event_type=event_type)
        return None

    now = clock()
    record = WebhookRecord(
        id=generate_record_id(),
        merchant_id=merchant_id,
        event_type=event_type,
        payload=build_envelope(event_type, data, now),
        url=merchant.webhook_url,
        attempts=0,
        next_retry_at=now,
        created_at=now
    )

    await store.put_record(record)

    logger.info(
        "Webhook enqueued",
        record_id=record.id,
        merchant_id=merchant_id,
        event_type=event_type
    )

    return record
