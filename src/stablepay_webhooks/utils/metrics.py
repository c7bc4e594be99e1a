"""
Module: metrics.py
Description: CloudWatch custom metrics publishing.

Publishes webhook batch metrics to CloudWatch for monitoring delivery
throughput and success rates.

Key Components:
- MetricsClient: CloudWatch metrics client
- put_metric(): Publish individual metrics
- publish_batch(): Publish the counters of one retry batch
- Graceful error handling for metrics failures

Dependencies: boto3, typing, logger
Author: StablePay Webhooks Team
"""

from typing import Dict, Optional

import boto3

from stablepay_webhooks.utils.logger import get_logger

logger = get_logger(__name__)


class MetricsClient:
    """CloudWatch metrics client."""

    def __init__(
        self,
        namespace: str = "StablePayWebhooks",
        region_name: Optional[str] = None,
        enabled: bool = True
    ):
        """
        Initialize metrics client.

        Args:
            namespace: CloudWatch metrics namespace
            region_name: AWS region (defaults to the boto3 session region)
            enabled: When False, metrics are only logged at debug level
        """
        self.namespace = namespace
        self.enabled = enabled
        self.cloudwatch = boto3.client('cloudwatch', region_name=region_name) if enabled else None

        logger.info(
            "Metrics client initialized",
            namespace=namespace,
            enabled=enabled
        )

    def put_metric(
        self,
        metric_name: str,
        value: float,
        unit: str = 'Count',
        dimensions: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Publish a metric to CloudWatch.

        Args:
            metric_name: Name of the metric
            value: Metric value
            unit: Metric unit (Count, Seconds, etc.)
            dimensions: Optional metric dimensions
        """
        if not self.enabled:
            logger.debug("Metrics disabled, skipping", metric_name=metric_name, value=value)
            return

        try:
            metric_data = {
                'MetricName': metric_name,
                'Value': value,
                'Unit': unit
            }

            if dimensions:
                metric_data['Dimensions'] = [
                    {'Name': k, 'Value': v}
                    for k, v in dimensions.items()
                ]

            self.cloudwatch.put_metric_data(
                Namespace=self.namespace,
                MetricData=[metric_data]
            )

            logger.debug(
                "Metric published to CloudWatch",
                metric_name=metric_name,
                value=value,
                unit=unit,
                dimensions=dimensions,
                namespace=self.namespace
            )

        except Exception as e:
            # Don't fail the batch if metrics fail
            logger.warning(
                "Failed to publish metric",
                metric_name=metric_name,
                value=value,
                error=str(e),
                namespace=self.namespace
            )

    def publish_batch(self, processed: int, succeeded: int, skipped: int) -> None:
        """Publish the counters of one retry batch."""
        self.put_metric("WebhooksProcessed", float(processed))
        self.put_metric("WebhooksSucceeded", float(succeeded))
        self.put_metric("WebhooksSkipped", float(skipped))
