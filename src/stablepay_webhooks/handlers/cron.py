"""
Module: cron.py
Description: Cron trigger endpoint for webhook retry batches.

An external scheduler (every 5 minutes in production) calls this endpoint
to run one retry batch. Delivery failures inside the batch are recorded
on the records, never surfaced here; only a batch that cannot start
(e.g. the store is unreachable) returns 500.

Key Components:
- run_webhook_retries(): GET/POST /cron/webhooks

Dependencies: FastAPI, auth, delivery, utils
Author: StablePay Webhooks Team
"""

from fastapi import APIRouter, Depends
from fastapi import status as status_codes
from fastapi.responses import JSONResponse

from stablepay_webhooks.auth.cron_secret import require_cron_secret
from stablepay_webhooks.delivery.worker import RetryDriver
from stablepay_webhooks.handlers.dependencies import get_driver, get_metrics_client
from stablepay_webhooks.models.response import ErrorResponse, TriggerResponse
from stablepay_webhooks.utils.logger import get_logger
from stablepay_webhooks.utils.metrics import MetricsClient
from stablepay_webhooks.utils.timestamps import utc_now

router = APIRouter(prefix="/cron", tags=["cron"])
logger = get_logger(__name__)


@router.api_route(
    "/webhooks",
    methods=["GET", "POST"],
    response_model=TriggerResponse,
    responses={500: {"model": ErrorResponse}},
    dependencies=[Depends(require_cron_secret)]
)
async def run_webhook_retries(
    driver: RetryDriver = Depends(get_driver),
    metrics_client: MetricsClient = Depends(get_metrics_client)
):
    """
    Run one webhook retry batch.

    Returns:
        TriggerResponse with processed and succeeded counts

    Example:
        GET /cron/webhooks
        Authorization: Bearer <CRON_SECRET>

        Response (200):
        {
            "success": true,
            "processed": 3,
            "succeeded": 2,
            "timestamp": "2024-01-15T10:35:00.000000+00:00"
        }
    """
    try:
        result = await driver.run_once()
    except Exception as e:
        logger.error(
            "Webhook cron run failed",
            error=str(e),
            error_type=type(e).__name__
        )
        return JSONResponse(
            status_code=status_codes.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal server error",
                message=str(e) or type(e).__name__
            ).model_dump()
        )

    metrics_client.publish_batch(result.processed, result.succeeded, result.skipped)

    return TriggerResponse(
        success=True,
        processed=result.processed,
        succeeded=result.succeeded,
        timestamp=utc_now()
    )
