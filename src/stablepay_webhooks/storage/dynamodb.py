"""
Module: dynamodb.py
Description: DynamoDB store for webhook records and merchant configuration.

Provides the read and write operations the retry driver and the operator
endpoints need, with conditional updates for claiming records and for
persisting attempt results.

Key Components:
- WebhookStore: Main client class for DynamoDB operations
- fetch_due(): Due records joined with merchant configuration
- claim() / complete_attempt(): Lease-guarded state transitions
- Record (de)serialization with fixed-width ISO timestamps

Table layout:
- webhook logs table keyed by 'id'
  - RetryIndex GSI ('retry_queue', 'next_retry_at'); 'retry_queue' is only
    present while a retry is scheduled, so terminal records leave the index
  - MerchantIndex GSI ('merchant_id', 'created_at')
- merchants table keyed by 'merchant_id'

Dependencies: boto3, botocore, pydantic, tenacity, datetime, typing
Author: StablePay Webhooks Team
"""

import json
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from stablepay_webhooks.exceptions import PersistenceError, StoreUnavailableError
from stablepay_webhooks.models.outcome import RetryDecision
from stablepay_webhooks.models.record import (
    MerchantWebhookConfig,
    PendingDelivery,
    WebhookRecord,
)
from stablepay_webhooks.utils.batch_helpers import chunk_list
from stablepay_webhooks.utils.logger import get_logger
from stablepay_webhooks.utils.timestamps import from_iso, to_iso

logger = get_logger(__name__)

RETRY_QUEUE = "pending"
RETRY_INDEX = "RetryIndex"
MERCHANT_INDEX = "MerchantIndex"

# DynamoDB batch_get_item accepts at most 100 keys per request
BATCH_GET_LIMIT = 100

THROTTLING_ERROR_CODES = frozenset({
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
})


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def _is_throttling(error: BaseException) -> bool:
    return isinstance(error, ClientError) and _error_code(error) in THROTTLING_ERROR_CODES


def _log_throttle_retry(retry_state) -> None:
    logger.warning(
        "DynamoDB write throttled, retrying",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception())
    )


# Retry throttled writes before they are surfaced as PersistenceError
throttle_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception(_is_throttling),
    before_sleep=_log_throttle_retry,
    reraise=True
)


def record_to_item(record: WebhookRecord) -> Dict[str, Any]:
    """
    Convert a WebhookRecord into a DynamoDB item.

    Datetimes become fixed-width ISO strings, the payload is stored as a
    JSON string to preserve number types, and None values are dropped.
    """
    item = record.model_dump()

    for field in ('delivered_at', 'next_retry_at', 'created_at', 'claimed_until'):
        if item.get(field) is not None:
            item[field] = to_iso(item[field])

    item['payload'] = json.dumps(item['payload'])

    if record.next_retry_at is not None and record.delivered_at is None:
        item['retry_queue'] = RETRY_QUEUE

    # DynamoDB doesn't allow None/null values
    return {k: v for k, v in item.items() if v is not None}


def item_to_record(item: Dict[str, Any]) -> WebhookRecord:
    """Convert a DynamoDB item back into a WebhookRecord."""
    data = dict(item)
    data.pop('retry_queue', None)

    if isinstance(data.get('payload'), str):
        data['payload'] = json.loads(data['payload'])

    for field in ('delivered_at', 'next_retry_at', 'created_at', 'claimed_until'):
        if field in data:
            data[field] = from_iso(data[field])

    # Numbers come back as Decimal
    data['attempts'] = int(data.get('attempts', 0))
    if data.get('http_status') is not None:
        data['http_status'] = int(data['http_status'])

    return WebhookRecord(**data)


def item_to_merchant(item: Dict[str, Any]) -> MerchantWebhookConfig:
    """Convert a merchants table item into a MerchantWebhookConfig."""
    return MerchantWebhookConfig(
        merchant_id=item['merchant_id'],
        webhook_url=item.get('webhook_url'),
        webhook_secret=item.get('webhook_secret'),
        webhook_enabled=bool(item.get('webhook_enabled', True)),
        webhook_events=list(item.get('webhook_events') or [])
    )


class WebhookStore:
    """
    DynamoDB-backed event log store.

    One instance is created at process start and shared by the driver and
    the API handlers; close() releases the underlying connection pool.

    Attributes:
        table_name: Name of the webhook logs table
        merchants_table_name: Name of the merchants table
        dynamodb: boto3 DynamoDB resource
        table: Webhook logs table resource
        merchants_table: Merchants table resource

    Example:
        >>> store = WebhookStore("stablepay-webhook-logs", "stablepay-merchants")
        >>> due = await store.fetch_due(now, limit=100)
    """

    def __init__(
        self,
        table_name: str,
        merchants_table_name: str,
        region_name: Optional[str] = None
    ):
        """
        Initialize the store.

        Args:
            table_name: Name of the webhook logs table
            merchants_table_name: Name of the merchants table
            region_name: AWS region (defaults to the boto3 session region)

        Raises:
            ValueError: If a table name is empty or invalid
        """
        if not table_name or not isinstance(table_name, str):
            raise ValueError("table_name must be a non-empty string")
        if not merchants_table_name or not isinstance(merchants_table_name, str):
            raise ValueError("merchants_table_name must be a non-empty string")

        self.table_name = table_name
        self.merchants_table_name = merchants_table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        self.merchants_table = self.dynamodb.Table(merchants_table_name)

        logger.info(
            "Webhook store initialized",
            table_name=table_name,
            merchants_table_name=merchants_table_name
        )

    def close(self) -> None:
        """Close the underlying botocore client."""
        self.dynamodb.meta.client.close()
        logger.info("Webhook store closed", table_name=self.table_name)

    @throttle_retry
    def _put_item(self, **kwargs) -> Dict[str, Any]:
        return self.table.put_item(**kwargs)

    @throttle_retry
    def _update_item(self, **kwargs) -> Dict[str, Any]:
        return self.table.update_item(**kwargs)

    async def put_record(self, record: WebhookRecord) -> None:
        """
        Store a new webhook record.

        Args:
            record: Record to store

        Raises:
            ValueError: If record is invalid
            PersistenceError: If the record already exists or the write fails
        """
        if not isinstance(record, WebhookRecord):
            raise ValueError("record must be a WebhookRecord instance")

        try:
            self._put_item(
                Item=record_to_item(record),
                ConditionExpression='attribute_not_exists(#id)',
                ExpressionAttributeNames={'#id': 'id'}
            )

            logger.info(
                "Webhook record stored",
                record_id=record.id,
                merchant_id=record.merchant_id,
                event_type=record.event_type,
                table_name=self.table_name
            )

        except ClientError as e:
            logger.error(
                "Failed to store webhook record",
                record_id=record.id,
                table_name=self.table_name,
                error_code=_error_code(e),
                error_message=e.response['Error'].get('Message')
            )
            raise PersistenceError(record.id, f"put failed: {_error_code(e)}") from e

    async def get_record(self, record_id: str) -> Optional[WebhookRecord]:
        """
        Retrieve a webhook record by ID.

        Args:
            record_id: Record identifier

        Returns:
            WebhookRecord if found, None otherwise

        Raises:
            ValueError: If record_id is invalid
            ClientError: If the DynamoDB operation fails
        """
        if not record_id or not isinstance(record_id, str):
            raise ValueError("record_id must be a non-empty string")

        try:
            response = self.table.get_item(Key={'id': record_id})
        except ClientError as e:
            logger.error(
                "Failed to retrieve webhook record",
                record_id=record_id,
                table_name=self.table_name,
                error_code=_error_code(e)
            )
            raise

        if 'Item' not in response:
            logger.warning(
                "Webhook record not found",
                record_id=record_id,
                table_name=self.table_name
            )
            return None

        return item_to_record(response['Item'])

    async def list_records(self, merchant_id: str, limit: int = 50) -> List[WebhookRecord]:
        """
        List a merchant's webhook records, newest first.

        Args:
            merchant_id: Merchant identifier
            limit: Maximum number of records (1-100)

        Raises:
            ValueError: If parameters are invalid
            ClientError: If the DynamoDB operation fails
        """
        if not merchant_id or not isinstance(merchant_id, str):
            raise ValueError("merchant_id must be a non-empty string")
        if limit <= 0 or limit > 100:
            raise ValueError("limit must be between 1 and 100")

        try:
            response = self.table.query(
                IndexName=MERCHANT_INDEX,
                KeyConditionExpression='#merchant_id = :merchant_id',
                ExpressionAttributeNames={'#merchant_id': 'merchant_id'},
                ExpressionAttributeValues={':merchant_id': merchant_id},
                ScanIndexForward=False,
                Limit=limit
            )
        except ClientError as e:
            logger.error(
                "Failed to list webhook records",
                merchant_id=merchant_id,
                table_name=self.table_name,
                error_code=_error_code(e)
            )
            raise

        records = [item_to_record(item) for item in response.get('Items', [])]

        logger.info(
            "Webhook records listed",
            merchant_id=merchant_id,
            count=len(records),
            limit=limit
        )

        return records

    async def get_merchant_config(self, merchant_id: str) -> Optional[MerchantWebhookConfig]:
        """Retrieve one merchant's webhook configuration."""
        if not merchant_id or not isinstance(merchant_id, str):
            raise ValueError("merchant_id must be a non-empty string")

        try:
            response = self.merchants_table.get_item(Key={'merchant_id': merchant_id})
        except ClientError as e:
            logger.error(
                "Failed to retrieve merchant config",
                merchant_id=merchant_id,
                table_name=self.merchants_table_name,
                error_code=_error_code(e)
            )
            raise

        item = response.get('Item')
        return item_to_merchant(item) if item else None

    async def batch_get_merchant_configs(
        self,
        merchant_ids: Iterable[str]
    ) -> Dict[str, MerchantWebhookConfig]:
        """
        Retrieve webhook configuration for several merchants.

        Args:
            merchant_ids: Merchant identifiers (duplicates are ignored)

        Returns:
            Mapping of merchant_id to config; unknown merchants are absent

        Raises:
            ClientError: If the DynamoDB operation fails
        """
        unique_ids = sorted(set(merchant_ids))
        configs: Dict[str, MerchantWebhookConfig] = {}

        for chunk in chunk_list(unique_ids, BATCH_GET_LIMIT):
            request = {
                self.merchants_table_name: {
                    'Keys': [{'merchant_id': merchant_id} for merchant_id in chunk]
                }
            }

            # Unprocessed keys are re-requested a bounded number of times
            for _ in range(3):
                response = self.dynamodb.batch_get_item(RequestItems=request)
                for item in response.get('Responses', {}).get(self.merchants_table_name, []):
                    config = item_to_merchant(item)
                    configs[config.merchant_id] = config

                request = response.get('UnprocessedKeys') or {}
                if not request:
                    break

            if request:
                logger.warning(
                    "Some merchant configs were not retrieved",
                    unprocessed_count=len(request.get(self.merchants_table_name, {}).get('Keys', [])),
                    table_name=self.merchants_table_name
                )

        return configs

    async def fetch_due(self, now: datetime, limit: int = 100) -> List[PendingDelivery]:
        """
        Fetch deliverable records due for an attempt, oldest due first.

        A record is due when it is undelivered, has next_retry_at at or
        before `now`, and holds no live claim. Each page of due records is
        joined with merchant configuration; records whose merchant is
        unknown or has no webhook URL, and items that fail validation, are
        passed over without counting toward `limit`, so they cannot crowd
        deliverable records out of the batch.

        Args:
            now: Current time
            limit: Maximum number of records (1-100)

        Raises:
            ValueError: If limit is invalid
            StoreUnavailableError: If the store cannot be read
        """
        if limit <= 0 or limit > 100:
            raise ValueError("limit must be between 1 and 100")

        now_iso = to_iso(now)
        pending: List[PendingDelivery] = []
        passed_over = 0
        kwargs: Dict[str, Any] = {}

        try:
            while len(pending) < limit:
                response = self.table.query(
                    IndexName=RETRY_INDEX,
                    KeyConditionExpression='#queue = :queue AND #next_retry_at <= :now',
                    FilterExpression=(
                        'attribute_not_exists(#delivered_at) AND '
                        '(attribute_not_exists(#claimed_until) OR #claimed_until <= :now)'
                    ),
                    ExpressionAttributeNames={
                        '#queue': 'retry_queue',
                        '#next_retry_at': 'next_retry_at',
                        '#delivered_at': 'delivered_at',
                        '#claimed_until': 'claimed_until'
                    },
                    ExpressionAttributeValues={':queue': RETRY_QUEUE, ':now': now_iso},
                    ScanIndexForward=True,
                    Limit=limit,
                    **kwargs
                )

                records = [
                    record for record in map(self._decode_due_item, response.get('Items', []))
                    if record is not None
                ]
                passed_over += len(response.get('Items', [])) - len(records)

                merchants = await self.batch_get_merchant_configs(r.merchant_id for r in records)
                for record in records:
                    merchant = merchants.get(record.merchant_id)
                    if merchant is None or not merchant.has_destination:
                        passed_over += 1
                        continue
                    pending.append(PendingDelivery(record=record, merchant=merchant))

                if 'LastEvaluatedKey' not in response:
                    break
                kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

        except ClientError as e:
            logger.error(
                "Failed to fetch due webhook records",
                table_name=self.table_name,
                error_code=_error_code(e),
                error_message=e.response['Error'].get('Message')
            )
            raise StoreUnavailableError(f"fetch failed: {_error_code(e)}") from e

        pending = pending[:limit]

        logger.info(
            "Due webhook records fetched",
            count=len(pending),
            passed_over=passed_over,
            limit=limit,
            table_name=self.table_name
        )

        return pending

    def _decode_due_item(self, item: Dict[str, Any]) -> Optional[WebhookRecord]:
        try:
            return item_to_record(item)
        except (ValidationError, ValueError, TypeError) as e:
            logger.error(
                "Skipping malformed webhook record",
                record_id=item.get('id'),
                error=str(e),
                table_name=self.table_name
            )
            return None

    async def claim(
        self,
        record: WebhookRecord,
        now: datetime,
        ttl_seconds: int
    ) -> Optional[str]:
        """
        Atomically claim a due record for one delivery attempt.

        The conditional update succeeds only while the record is still
        undelivered, scheduled, due and not held by a live claim.

        Args:
            record: Record to claim
            now: Current time
            ttl_seconds: Claim lease duration

        Returns:
            Claim token on success, None if another driver holds the record

        Raises:
            PersistenceError: If the update fails for another reason
        """
        token = secrets.token_hex(16)
        now_iso = to_iso(now)

        try:
            self._update_item(
                Key={'id': record.id},
                UpdateExpression='SET #claimed_until = :until, #claim_token = :token',
                ConditionExpression=(
                    'attribute_exists(#queue) AND attribute_not_exists(#delivered_at) AND '
                    '#next_retry_at <= :now AND '
                    '(attribute_not_exists(#claimed_until) OR #claimed_until <= :now)'
                ),
                ExpressionAttributeNames={
                    '#queue': 'retry_queue',
                    '#delivered_at': 'delivered_at',
                    '#next_retry_at': 'next_retry_at',
                    '#claimed_until': 'claimed_until',
                    '#claim_token': 'claim_token'
                },
                ExpressionAttributeValues={
                    ':until': to_iso(now + timedelta(seconds=ttl_seconds)),
                    ':token': token,
                    ':now': now_iso
                }
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                logger.info("Webhook record already claimed", record_id=record.id)
                return None
            raise PersistenceError(record.id, f"claim failed: {_error_code(e)}") from e

        return token

    async def complete_attempt(
        self,
        record: WebhookRecord,
        decision: RetryDecision,
        claim_token: str
    ) -> None:
        """
        Persist the result of a delivery attempt and release the claim.

        The write is conditional on the caller still holding the claim and
        on the attempt count being unchanged since the record was fetched,
        so each attempt is counted exactly once.

        Args:
            record: Record as fetched before the attempt
            decision: Next state computed by the retry scheduler
            claim_token: Token returned by claim()

        Raises:
            PersistenceError: If the claim was lost or the write failed
        """
        set_clauses = ['#attempts = :attempts']
        remove_clauses = ['#claimed_until', '#claim_token']
        names = {
            '#attempts': 'attempts',
            '#claimed_until': 'claimed_until',
            '#claim_token': 'claim_token',
            '#http_status': 'http_status',
            '#response': 'response',
            '#next_retry_at': 'next_retry_at',
            '#queue': 'retry_queue'
        }
        values: Dict[str, Any] = {
            ':attempts': decision.attempts,
            ':expected_attempts': record.attempts,
            ':token': claim_token
        }

        if decision.http_status is not None:
            set_clauses.append('#http_status = :http_status')
            values[':http_status'] = decision.http_status
        else:
            remove_clauses.append('#http_status')

        if decision.response is not None:
            set_clauses.append('#response = :response')
            values[':response'] = decision.response
        else:
            remove_clauses.append('#response')

        if decision.delivered_at is not None:
            set_clauses.append('#delivered_at = :delivered_at')
            names['#delivered_at'] = 'delivered_at'
            values[':delivered_at'] = to_iso(decision.delivered_at)

        if decision.next_retry_at is not None:
            set_clauses.append('#next_retry_at = :next_retry_at')
            set_clauses.append('#queue = :queue')
            values[':next_retry_at'] = to_iso(decision.next_retry_at)
            values[':queue'] = RETRY_QUEUE
        else:
            remove_clauses.extend(['#next_retry_at', '#queue'])

        update_expression = f"SET {', '.join(set_clauses)} REMOVE {', '.join(remove_clauses)}"

        try:
            self._update_item(
                Key={'id': record.id},
                UpdateExpression=update_expression,
                ConditionExpression='#claim_token = :token AND #attempts = :expected_attempts',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            code = _error_code(e)
            logger.error(
                "Failed to persist webhook attempt",
                record_id=record.id,
                attempts=decision.attempts,
                error_code=code,
                table_name=self.table_name
            )
            if code == 'ConditionalCheckFailedException':
                raise PersistenceError(record.id, "claim lost before update") from e
            raise PersistenceError(record.id, f"update failed: {code}") from e

        logger.info(
            "Webhook attempt persisted",
            record_id=record.id,
            attempts=decision.attempts,
            http_status=decision.http_status,
            delivered=decision.delivered,
            terminal=decision.terminal,
            next_retry_at=values.get(':next_retry_at')
        )

    async def schedule_immediate_retry(
        self,
        record_id: str,
        merchant_id: str,
        now: datetime
    ) -> Optional[WebhookRecord]:
        """
        Make an undelivered record due immediately.

        Works for exhausted records too; the record then gets one more
        attempt before becoming terminal again.

        Args:
            record_id: Record identifier
            merchant_id: Merchant that must own the record
            now: Time to set as next_retry_at

        Returns:
            Updated record, or None if missing, delivered, owned by another
            merchant or currently claimed

        Raises:
            ClientError: If the DynamoDB operation fails
        """
        now_iso = to_iso(now)

        try:
            response = self._update_item(
                Key={'id': record_id},
                UpdateExpression='SET #next_retry_at = :now, #queue = :queue',
                ConditionExpression=(
                    'attribute_exists(#id) AND #merchant_id = :merchant_id AND '
                    'attribute_not_exists(#delivered_at) AND '
                    '(attribute_not_exists(#claimed_until) OR #claimed_until <= :now)'
                ),
                ExpressionAttributeNames={
                    '#id': 'id',
                    '#merchant_id': 'merchant_id',
                    '#delivered_at': 'delivered_at',
                    '#claimed_until': 'claimed_until',
                    '#next_retry_at': 'next_retry_at',
                    '#queue': 'retry_queue'
                },
                ExpressionAttributeValues={
                    ':now': now_iso,
                    ':queue': RETRY_QUEUE,
                    ':merchant_id': merchant_id
                },
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                return None
            logger.error(
                "Failed to schedule manual retry",
                record_id=record_id,
                error_code=_error_code(e)
            )
            raise

        logger.info("Manual webhook retry scheduled", record_id=record_id, merchant_id=merchant_id)
        return item_to_record(response['Attributes'])
