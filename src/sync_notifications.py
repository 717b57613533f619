"""Slack notifications for device group sync passes.

This module provides functions to send Slack notifications for:
- The summary of a sync pass
- Errors encountered during a sync pass
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from config import get_logger

if TYPE_CHECKING:
    from slack_sdk import WebClient

logger = get_logger(service="sync_notifications")

MAX_ERRORS_TO_DISPLAY = 5


@dataclass
class SyncNotificationResult:
    """Result of a notification attempt."""

    success: bool
    message: str
    error: str | None = None


@dataclass
class SyncSummary:
    """Summary of a sync pass for notification purposes."""

    records_total: int
    records_processed: int
    records_skipped: int
    records_failed: int
    devices_added: int
    devices_removed: int
    errors: list[str]


def _post(slack_client: WebClient, channel_id: str, text: str, description: str) -> SyncNotificationResult:
    try:
        slack_client.chat_postMessage(channel=channel_id, text=text)
        logger.info(f"Sent {description} notification")
        return SyncNotificationResult(success=True, message="Notification sent successfully")
    except Exception as e:
        logger.exception(f"Failed to send {description} notification: {e}")
        return SyncNotificationResult(success=False, message="Failed to send notification", error=str(e))


def notify_sync_error(
    slack_client: WebClient,
    error_message: str,
    channel_id: str,
    error_count: int = 1,
) -> SyncNotificationResult:
    """Send Slack notification when a sync pass encounters errors.

    Args:
        slack_client: Slack WebClient instance.
        error_message: Description of the error(s).
        channel_id: Channel to post to.
        error_count: Number of errors encountered.

    Returns:
        SyncNotificationResult indicating success or failure.
    """
    text = f":rotating_light: *Device Group Sync: Error Encountered*\n• Error Count: {error_count}\n• Details: {error_message}"
    return _post(slack_client, channel_id, text, "sync error")


def format_summary(summary: SyncSummary, include_errors: bool = True) -> str:
    if summary.errors:
        emoji = ":warning:"
        status = "Completed with Errors"
    else:
        emoji = ":white_check_mark:"
        status = "Completed Successfully"

    text = (
        f"{emoji} *Device Group Sync: {status}*\n"
        f"• Mappings: {summary.records_total} "
        f"({summary.records_processed} processed, {summary.records_skipped} skipped, {summary.records_failed} failed)\n"
        f"• Devices Added: {summary.devices_added}\n"
        f"• Devices Removed: {summary.devices_removed}"
    )

    if not summary.errors:
        return text
    if not include_errors:
        return text + f"\n• Errors: {len(summary.errors)}"

    error_text = "\n".join(f"  - {e}" for e in summary.errors[:MAX_ERRORS_TO_DISPLAY])
    if len(summary.errors) > MAX_ERRORS_TO_DISPLAY:
        error_text += f"\n  ... and {len(summary.errors) - MAX_ERRORS_TO_DISPLAY} more errors"
    return text + f"\n• Errors ({len(summary.errors)}):\n{error_text}"


def notify_sync_summary(
    slack_client: WebClient,
    summary: SyncSummary,
    channel_id: str,
    include_errors: bool = True,
) -> SyncNotificationResult:
    """Send Slack notification with the sync pass summary.

    Pass include_errors=False when the errors already went out in a separate
    error notification; the summary then only carries their count.
    """
    return _post(slack_client, channel_id, format_summary(summary, include_errors), "sync summary")
