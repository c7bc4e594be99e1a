"""
Module: response.py
Description: API response models for the webhook service.

Defines response models returned by the cron trigger and the operator
delivery-log endpoints.

Key Components:
- TriggerResponse: Result of one retry batch
- ErrorResponse: Error body for failed trigger runs
- WebhookLogSummary / WebhookLogDetail: Delivery log views
- WebhookLogListResponse: Paged list of log summaries
- MessageResponse: Acknowledgement for operator actions

Dependencies: pydantic, datetime, typing
Author: StablePay Webhooks Team
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .record import WebhookRecord


class TriggerResponse(BaseModel):
    """
    Response for a completed retry batch.

    Attributes:
        success: Always True; failed runs return ErrorResponse instead
        processed: Records for which a delivery was attempted
        succeeded: Records that received a 2xx response
        timestamp: When the batch finished
    """

    success: bool = Field(default=True, description="Batch completed")
    processed: int = Field(..., ge=0, description="Delivery attempts made")
    succeeded: int = Field(..., ge=0, description="Deliveries that returned 2xx")
    timestamp: datetime = Field(..., description="Batch completion time")


class ErrorResponse(BaseModel):
    """Error body returned when a batch could not run."""

    error: str = Field(..., description="Error summary")
    message: Optional[str] = Field(default=None, description="Error detail")


class WebhookLogSummary(BaseModel):
    """List view of a webhook record; omits payload and response body."""

    id: str
    event_type: str
    url: Optional[str] = None
    http_status: Optional[int] = None
    attempts: int
    delivered_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: WebhookRecord) -> "WebhookLogSummary":
        return cls(
            id=record.id,
            event_type=record.event_type,
            url=record.url,
            http_status=record.http_status,
            attempts=record.attempts,
            delivered_at=record.delivered_at,
            next_retry_at=record.next_retry_at,
            created_at=record.created_at
        )


class WebhookLogDetail(WebhookLogSummary):
    """Full view of a webhook record."""

    payload: Dict[str, Any]
    response: Optional[str] = None

    @classmethod
    def from_record(cls, record: WebhookRecord) -> "WebhookLogDetail":
        summary = WebhookLogSummary.from_record(record)
        return cls(
            **summary.model_dump(),
            payload=record.payload,
            response=record.response
        )


class WebhookLogListResponse(BaseModel):
    """Delivery logs for one merchant, newest first."""

    logs: List[WebhookLogSummary]
    count: int


class MessageResponse(BaseModel):
    """Acknowledgement for operator actions."""

    success: bool = True
    message: str
    record_id: Optional[str] = None
