"""
Module: push.py
Description: Push webhook delivery to merchant endpoints.

Implements a single HTTP POST attempt with signed headers and a hard
timeout. The client never retries; retry scheduling belongs to the
retry scheduler and driver.
"""

import asyncio
from datetime import datetime
from typing import Optional

import httpx

from stablepay_webhooks.models.outcome import (
    DeliveryFailure,
    DeliveryOutcome,
    DeliverySuccess,
    NetworkError,
)
from stablepay_webhooks.utils.logger import get_logger
from stablepay_webhooks.utils.timestamps import to_iso

logger = get_logger(__name__)

TIMEOUT_MESSAGE = "timeout"


class WebhookDeliveryClient:
    """
    HTTP client for pushing signed webhooks to merchants.

    Each call performs exactly one POST bounded by timeout_seconds for the
    whole exchange (connect, send, and read), and reports the result as a
    DeliveryOutcome instead of raising.
    """

    def __init__(
        self,
        header_prefix: str = "StablePay",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize push delivery client.

        Args:
            header_prefix: Product name used in the X-<Product>-* headers
            timeout_seconds: Hard timeout for one delivery attempt
            transport: Optional httpx transport (used by tests)

        Raises:
            ValueError: If header_prefix or timeout_seconds is invalid
        """
        if not header_prefix or not isinstance(header_prefix, str):
            raise ValueError("header_prefix must be a non-empty string")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self.header_prefix = header_prefix
        self.timeout_seconds = timeout_seconds
        self.timeout = httpx.Timeout(timeout_seconds)
        self.transport = transport

        logger.info(
            "Webhook delivery client initialized",
            header_prefix=header_prefix,
            timeout_seconds=timeout_seconds
        )

    @property
    def signature_header(self) -> str:
        return f"X-{self.header_prefix}-Signature"

    @property
    def timestamp_header(self) -> str:
        return f"X-{self.header_prefix}-Timestamp"

    def build_headers(self, signature: str, timestamp: datetime) -> dict:
        return {
            'Content-Type': 'application/json',
            self.signature_header: signature,
            self.timestamp_header: to_iso(timestamp),
        }

    async def deliver(
        self,
        url: str,
        payload: bytes,
        signature: str,
        timestamp: datetime
    ) -> DeliveryOutcome:
        """
        Deliver a signed payload via HTTP POST.

        Args:
            url: Merchant webhook URL
            payload: Serialized JSON body, exactly as signed
            signature: Hex HMAC of payload
            timestamp: When the attempt began

        Returns:
            DeliverySuccess for 2xx, DeliveryFailure for other statuses,
            NetworkError when no response was received
        """
        if not url or not isinstance(url, str):
            raise ValueError("url must be a non-empty string")
        if not url.startswith(('http://', 'https://')):
            raise ValueError("url must be a valid HTTP/HTTPS URL")

        headers = self.build_headers(signature, timestamp)

        logger.debug("Attempting webhook delivery", url=url, payload_bytes=len(payload))

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await asyncio.wait_for(
                    client.post(url, content=payload, headers=headers),
                    timeout=self.timeout_seconds
                )

        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("Webhook delivery timeout", url=url, timeout_seconds=self.timeout_seconds)
            return NetworkError(message=TIMEOUT_MESSAGE)

        except httpx.HTTPError as e:
            logger.warning(
                "Webhook delivery network error",
                url=url,
                error=str(e),
                error_type=type(e).__name__
            )
            return NetworkError(message=str(e) or type(e).__name__)

        except Exception as e:
            logger.error(
                "Webhook delivery failed",
                url=url,
                error=str(e),
                error_type=type(e).__name__
            )
            return NetworkError(message=str(e) or type(e).__name__)

        body = self._read_body(response)

        if 200 <= response.status_code < 300:
            logger.info(
                "Webhook delivered successfully",
                url=url,
                status_code=response.status_code,
                response_time_ms=response.elapsed.total_seconds() * 1000
            )
            return DeliverySuccess(status_code=response.status_code, body=body)

        logger.warning(
            "Webhook delivery HTTP error",
            url=url,
            status_code=response.status_code,
            response=body[:500]
        )
        return DeliveryFailure(status_code=response.status_code, body=body)

    @staticmethod
    def _read_body(response: httpx.Response) -> str:
        """Response text, or an empty string when it cannot be decoded."""
        try:
            return response.text
        except Exception as e:
            logger.debug("Could not read webhook response body", error=str(e))
            return ""
