"""Reads user group to device group mapping records from DynamoDB."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from config import get_logger
from entities import MappingRecord
from errors import MappingStoreError

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBServiceResource

logger = get_logger(service="mapping_store")

PARTITION_KEY_ATTRIBUTE = "PartitionKey"
SORT_KEY_ATTRIBUTE = "RowKey"


def parse_mapping_record(item: dict[str, Any]) -> MappingRecord | None:
    try:
        return MappingRecord.model_validate(item)
    except ValidationError as e:
        logger.warning(
            f"Skipping malformed mapping record {item.get(SORT_KEY_ATTRIBUTE, '<unknown>')}: {e.error_count()} validation error(s)",
            extra={"errors": e.errors(include_url=False, include_input=False)},
        )
        return None


def _query_items(table: Any, partition_key: str) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    kwargs: dict[str, Any] = {"KeyConditionExpression": Key(PARTITION_KEY_ATTRIBUTE).eq(partition_key)}
    while True:
        response = table.query(**kwargs)
        items.extend(response.get("Items", []))
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def read_mapping_records(
    table_name: str,
    partition_key: str,
    dynamodb: DynamoDBServiceResource | None = None,
) -> list[MappingRecord]:
    """Load every mapping record stored under a partition key.

    Args:
        table_name: DynamoDB table holding the mapping records.
        partition_key: Value of the PartitionKey attribute to query.
        dynamodb: Optional DynamoDB resource (defaults to a new one).

    Returns:
        Mapping records ordered by RowKey. Malformed items are skipped.

    Raises:
        MappingStoreError: If the table cannot be queried.
    """
    dynamodb = dynamodb or boto3.resource("dynamodb")
    table = dynamodb.Table(table_name)
    try:
        items = _query_items(table, partition_key)
    except (ClientError, BotoCoreError) as e:
        logger.exception(f"Failed to read mapping records from {table_name}: {e}")
        raise MappingStoreError(f"Failed to read mapping records from {table_name}: {e}") from e

    records = [record for record in map(parse_mapping_record, items) if record is not None]
    logger.info(
        f"Loaded {len(records)} of {len(items)} mapping record(s)",
        extra={"table_name": table_name, "partition_key": partition_key},
    )
    return records
