"""Lambda entry point for the scheduled device group sync.

Loads configuration, acquires a Graph token, reads the mapping records and runs
one reconciliation pass over them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import boto3
from pydantic import ValidationError
from slack_sdk import WebClient

from config import get_config, get_logger
from credentials import credential_from_config
from errors import CredentialError, MappingStoreError
from graph import GraphClient
from mapping_store import read_mapping_records
from reconciler import SyncContext, SyncOperationResult, perform_sync
from sync_notifications import MAX_ERRORS_TO_DISPLAY, notify_sync_error, notify_sync_summary

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBServiceResource

    from config import Config

logger = get_logger(service="device_syncer")

# Created once per container and reused across invocations
_dynamodb: DynamoDBServiceResource = boto3.resource("dynamodb")


def _error_response(message: str) -> dict[str, Any]:
    return {
        "statusCode": 500,
        "body": {"error": message, "success": False},
    }


def _send_notifications(cfg: Config, result: SyncOperationResult) -> None:
    if not cfg.post_update_to_slack:
        return
    if not result.has_changes:
        logger.info("No changes detected, skipping notification")
        return

    slack_client = WebClient(token=cfg.slack_bot_token)
    if result.errors:
        notify_sync_error(
            slack_client=slack_client,
            error_message="\n".join(result.errors[:MAX_ERRORS_TO_DISPLAY]),
            channel_id=cfg.slack_channel_id,
            error_count=len(result.errors),
        )
    notify_sync_summary(
        slack_client=slack_client,
        summary=result.to_summary(),
        channel_id=cfg.slack_channel_id,
        include_errors=not result.errors,
    )


def lambda_handler(event: dict[str, Any], context: object) -> dict[str, Any]:  # noqa: ARG001
    """Lambda handler entry point for the device group sync.

    Args:
        event: Lambda event (typically from an EventBridge schedule). A truthy
            "dry_run" key computes changes without applying them.
        context: Lambda context.

    Returns:
        Dictionary with the sync pass result.
    """
    logger.info("Device group syncer Lambda invoked", extra={"event": event})

    try:
        cfg = get_config()
    except ValidationError as e:
        logger.exception(f"Configuration error: {e}")
        return _error_response(f"Invalid configuration: {e.error_count()} error(s)")

    dry_run = cfg.dry_run or bool((event or {}).get("dry_run"))

    credential = credential_from_config(cfg)
    try:
        credential.acquire()
    except CredentialError as e:
        return _error_response(str(e))

    try:
        records = read_mapping_records(cfg.mapping_table_name, cfg.mapping_partition_key, _dynamodb)
    except MappingStoreError as e:
        return _error_response(str(e))

    client = GraphClient(credential, cfg.graph_base_url, timeout=cfg.request_timeout_seconds)
    result = perform_sync(SyncContext(client=client, dry_run=dry_run), records)

    _send_notifications(cfg, result)

    return {
        "statusCode": 200 if result.success else 500,
        "body": {
            "success": result.success,
            "dry_run": dry_run,
            "records_total": result.records_total,
            "records_processed": result.records_processed,
            "records_skipped": result.records_skipped,
            "records_failed": result.records_failed,
            "devices_added": result.devices_added,
            "devices_removed": result.devices_removed,
            "error_count": len(result.errors),
        },
    }
