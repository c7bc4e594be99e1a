"""
Module: logs.py
Description: Operator endpoints for webhook delivery logs.

Lets support staff inspect a merchant's delivery history, force an
immediate retry of an undelivered webhook, and send a test webhook.
All routes share the cron bearer-secret guard.

Key Components:
- list_webhook_logs(): GET /webhooks/logs
- get_webhook_log(): GET /webhooks/logs/{log_id}
- retry_webhook_log(): POST /webhooks/logs/{log_id}/retry
- send_test_webhook(): POST /webhooks/test

Dependencies: FastAPI, auth, delivery, storage
Author: StablePay Webhooks Team
"""

import time
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as status_codes

from stablepay_webhooks.auth.cron_secret import require_cron_secret
from stablepay_webhooks.delivery.enqueue import enqueue_webhook
from stablepay_webhooks.exceptions import MerchantNotFoundError
from stablepay_webhooks.handlers.dependencies import get_store
from stablepay_webhooks.models.response import (
    MessageResponse,
    WebhookLogDetail,
    WebhookLogListResponse,
    WebhookLogSummary,
)
from stablepay_webhooks.storage.dynamodb import WebhookStore
from stablepay_webhooks.utils.logger import get_logger
from stablepay_webhooks.utils.timestamps import to_iso, utc_now

router = APIRouter(
    prefix="/webhooks",
    tags=["webhooks"],
    dependencies=[Depends(require_cron_secret)]
)
logger = get_logger(__name__)

TEST_EVENT_TYPE = "order.created"


@router.get("/logs", response_model=WebhookLogListResponse)
async def list_webhook_logs(
    merchant_id: str = Query(..., min_length=1),
    limit: int = Query(default=50, ge=1, le=100),
    store: WebhookStore = Depends(get_store)
) -> WebhookLogListResponse:
    """
    List a merchant's webhook deliveries, newest first.

    Payloads and response bodies are omitted; fetch a single log for
    full details.
    """
    records = await store.list_records(merchant_id, limit=limit)

    return WebhookLogListResponse(
        logs=[WebhookLogSummary.from_record(record) for record in records],
        count=len(records)
    )


@router.get("/logs/{log_id}", response_model=WebhookLogDetail)
async def get_webhook_log(
    log_id: str,
    merchant_id: str = Query(..., min_length=1),
    store: WebhookStore = Depends(get_store)
) -> WebhookLogDetail:
    """
    Get one webhook delivery with payload and last response.

    Raises:
        HTTPException: 404 if missing or owned by another merchant
    """
    record = await store.get_record(log_id)

    if record is None or record.merchant_id != merchant_id:
        raise HTTPException(
            status_code=status_codes.HTTP_404_NOT_FOUND,
            detail="Webhook log not found"
        )

    return WebhookLogDetail.from_record(record)


@router.post("/logs/{log_id}/retry", response_model=MessageResponse)
async def retry_webhook_log(
    log_id: str,
    merchant_id: str = Query(..., min_length=1),
    store: WebhookStore = Depends(get_store)
) -> MessageResponse:
    """
    Make an undelivered webhook due immediately.

    The next cron run attempts delivery.

    Raises:
        HTTPException: 404 if missing, delivered, claimed, or owned by
            another merchant
    """
    record = await store.schedule_immediate_retry(log_id, merchant_id, utc_now())

    if record is None:
        raise HTTPException(
            status_code=status_codes.HTTP_404_NOT_FOUND,
            detail="Webhook log not found or already delivered"
        )

    logger.info("Manual webhook retry triggered", record_id=log_id, merchant_id=merchant_id)

    return MessageResponse(
        message="Retry scheduled. Check webhook logs for updated status.",
        record_id=record.id
    )


@router.post("/test", response_model=MessageResponse)
async def send_test_webhook(
    merchant_id: str = Query(..., min_length=1),
    store: WebhookStore = Depends(get_store)
) -> MessageResponse:
    """
    Enqueue a synthetic order.created webhook for a merchant.

    Raises:
        HTTPException: 404 if the merchant is unknown
        HTTPException: 400 if no URL is configured or webhooks are disabled
    """
    merchant = await store.get_merchant_config(merchant_id)
    if merchant is None:
        raise HTTPException(
            status_code=status_codes.HTTP_404_NOT_FOUND,
            detail="Merchant not found"
        )
    if not merchant.has_destination:
        raise HTTPException(
            status_code=status_codes.HTTP_400_BAD_REQUEST,
            detail="Webhook URL not configured"
        )
    if not merchant.webhook_enabled:
        raise HTTPException(
            status_code=status_codes.HTTP_400_BAD_REQUEST,
            detail="Webhooks disabled"
        )

    now = utc_now()
    data = {
        'orderId': f"test_{int(time.time() * 1000)}",
        'amount': 10.00,
        'chain': 'BASE_SEPOLIA',
        'paymentAddress': '0x0000000000000000000000000000000000000000',
        'expiresAt': to_iso(now + timedelta(minutes=30)),
        '_isTest': True,
    }

    try:
        # Test webhooks bypass the merchant's event subscription filter
        record = await enqueue_webhook(
            store,
            merchant_id,
            TEST_EVENT_TYPE,
            data,
            clock=lambda: now,
            respect_subscriptions=False
        )
    except MerchantNotFoundError:
        raise HTTPException(
            status_code=status_codes.HTTP_404_NOT_FOUND,
            detail="Merchant not found"
        )

    logger.info("Test webhook enqueued", merchant_id=merchant_id, record_id=record.id)

    return MessageResponse(
        message="Test webhook queued. Check your webhook logs for delivery status.",
        record_id=record.id
    )
