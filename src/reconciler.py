"""Reconciles device group membership for each configured mapping record.

Every record runs through the same stages: resolve the user group members,
resolve their devices, filter, read the device group membership, diff and
apply. A failure ends the record it happened in; the pass moves on to the next
record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from batch_executor import StageStatus, apply_diff
from config import GRAPH_BATCH_LIMIT, get_logger
from device_filter import filter_devices
from errors import GraphApiError
from membership_diff import compute_diff, current_membership
from resolver import resolve_devices, resolve_user_members
from sync_notifications import SyncSummary

if TYPE_CHECKING:
    from entities import MappingRecord
    from graph import GraphClient

logger = get_logger(service="reconciler")


class Stage(Enum):
    start = "start"
    resolve_users = "resolve_users"
    resolve_devices = "resolve_devices"
    filter = "filter"
    read_current_membership = "read_current_membership"
    diff = "diff"
    apply = "apply"
    done = "done"


class RecordStatus(Enum):
    skipped = "skipped"
    succeeded = "succeeded"
    partial = "partial"
    failed = "failed"


@dataclass
class SyncContext:
    client: GraphClient
    dry_run: bool = False
    batch_size: int = GRAPH_BATCH_LIMIT


@dataclass
class RecordResult:
    """Outcome of reconciling one mapping record."""

    record_name: str
    device_group_id: str
    status: RecordStatus = RecordStatus.succeeded
    stage: Stage = Stage.start
    reason: str | None = None

    members: int = 0
    candidate_devices: int = 0
    desired_devices: int = 0
    current_members: int = 0
    to_add: int = 0
    to_remove: int = 0
    devices_added: int = 0
    devices_removed: int = 0
    errors: list[str] = field(default_factory=list)

    def mark_partial(self, error: str) -> None:
        self.errors.append(error)
        if self.status is RecordStatus.succeeded:
            self.status = RecordStatus.partial

    def fail(self, error: str) -> None:
        self.errors.append(error)
        self.status = RecordStatus.failed

    def skip(self, reason: str) -> None:
        self.reason = reason
        self.status = RecordStatus.skipped


def reconcile_record(ctx: SyncContext, record: MappingRecord) -> RecordResult:  # noqa: PLR0911
    """Converge one device group to the filtered devices of its user group.

    Args:
        ctx: SyncContext with the Graph client and run options.
        record: The mapping record to reconcile.

    Returns:
        RecordResult with the final status, the stage reached and counts.
    """
    result = RecordResult(record_name=record.display_name, device_group_id=record.device_group_id)

    if not record.is_active:
        logger.info(f"Skipping mapping '{record.display_name}': state is {record.state.value}")
        result.skip(f"State is {record.state.value}")
        return result

    try:
        result.stage = Stage.resolve_users
        members = resolve_user_members(ctx.client, record.user_group_id)
        result.members = len(members)
        if not members:
            logger.warning(f"User group '{record.user_group_name}' ({record.user_group_id}) has no members, skipping")
            result.skip("User group has no members")
            return result

        result.stage = Stage.resolve_devices
        resolution = resolve_devices(ctx.client, members, ctx.batch_size)
        result.candidate_devices = len(resolution.devices)
        for chunk in resolution.failed_chunks:
            result.mark_partial(
                f"Device lookup batch {chunk.index} for {record.user_group_name} failed "
                f"({len(chunk.member_ids)} member(s) skipped): {chunk.error}"
            )
        for lookup in resolution.failed_lookups:
            result.mark_partial(
                f"Device lookup for member {lookup.member_id} of {record.user_group_name} "
                f"failed with HTTP {lookup.status}"
            )

        result.stage = Stage.filter
        desired = filter_devices(resolution.devices, record)
        result.desired_devices = len({device.id for device in desired})

        result.stage = Stage.read_current_membership
        current = current_membership(ctx.client.read_group_members(record.device_group_id))
        result.current_members = len(current.member_ids)

        result.stage = Stage.diff
        diff = compute_diff(desired, current)
        result.to_add = len(diff.to_add)
        result.to_remove = len(diff.to_remove)

        if diff.is_empty:
            logger.info(f"Device group '{record.device_group_name}' is already in sync")
            result.stage = Stage.done
            return result

        if ctx.dry_run:
            logger.info(
                f"Dry run: would add {result.to_add} and remove {result.to_remove} device(s) in '{record.device_group_name}'",
                extra={"to_add": sorted(diff.to_add), "to_remove": sorted(diff.to_remove)},
            )
            result.stage = Stage.done
            return result

        result.stage = Stage.apply
        outcome = apply_diff(ctx.client, record.device_group_id, diff, ctx.batch_size)
        result.devices_added = outcome.added
        result.devices_removed = outcome.removed
        errors = outcome.errors(record.device_group_name or record.device_group_id)
        if outcome.status is StageStatus.failure:
            for error in errors:
                result.fail(error)
        else:
            for error in errors:
                result.mark_partial(error)
        result.stage = Stage.done
        return result

    except GraphApiError as e:
        logger.warning(
            f"Mapping '{record.display_name}' failed during {result.stage.value}: {e}",
            extra={
                "operation": "reconcile_record",
                "stage": result.stage.value,
                "user_group_id": record.user_group_id,
                "device_group_id": record.device_group_id,
            },
        )
        result.fail(f"{record.display_name}: {result.stage.value} failed: {e}")
        return result
    except Exception as e:
        logger.exception(f"Unexpected error while reconciling '{record.display_name}' during {result.stage.value}: {e}")
        result.fail(f"{record.display_name}: unexpected error during {result.stage.value}: {e}")
        return result


@dataclass
class SyncOperationResult:
    """Result of one reconciliation pass over all mapping records."""

    start_time: datetime
    end_time: datetime | None = None
    success: bool = False

    records_total: int = 0
    records_processed: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    devices_added: int = 0
    devices_removed: int = 0
    errors: list[str] = field(default_factory=list)
    record_results: list[RecordResult] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.devices_added or self.devices_removed or self.errors)

    def add_record_result(self, record_result: RecordResult) -> None:
        self.record_results.append(record_result)
        if record_result.status is RecordStatus.skipped:
            self.records_skipped += 1
        else:
            self.records_processed += 1
        if record_result.status is RecordStatus.failed:
            self.records_failed += 1
        self.devices_added += record_result.devices_added
        self.devices_removed += record_result.devices_removed
        self.errors.extend(record_result.errors)

    def to_summary(self) -> SyncSummary:
        return SyncSummary(
            records_total=self.records_total,
            records_processed=self.records_processed,
            records_skipped=self.records_skipped,
            records_failed=self.records_failed,
            devices_added=self.devices_added,
            devices_removed=self.devices_removed,
            errors=self.errors,
        )

    def log_start(self) -> None:
        logger.info(
            "Device group sync operation started",
            extra={
                "operation": "sync_start",
                "start_time": self.start_time.isoformat(),
                "records_total": self.records_total,
            },
        )

    def log_completion(self) -> None:
        duration_ms = None
        if self.end_time:
            duration_ms = int((self.end_time - self.start_time).total_seconds() * 1000)

        logger.info(
            "Device group sync operation completed",
            extra={
                "operation": "sync_complete",
                "start_time": self.start_time.isoformat(),
                "end_time": self.end_time.isoformat() if self.end_time else None,
                "duration_ms": duration_ms,
                "success": self.success,
                "records_total": self.records_total,
                "records_processed": self.records_processed,
                "records_skipped": self.records_skipped,
                "records_failed": self.records_failed,
                "devices_added": self.devices_added,
                "devices_removed": self.devices_removed,
                "error_count": len(self.errors),
            },
        )


def _finalize_result(result: SyncOperationResult) -> SyncOperationResult:
    result.success = len(result.errors) == 0
    result.end_time = datetime.now(timezone.utc)
    result.log_completion()
    return result


def perform_sync(ctx: SyncContext, records: Sequence[MappingRecord]) -> SyncOperationResult:
    """Reconcile every mapping record in order.

    Args:
        ctx: SyncContext with the Graph client and run options.
        records: Mapping records read for this pass.

    Returns:
        SyncOperationResult with per-record results, statistics and errors.
    """
    result = SyncOperationResult(start_time=datetime.now(timezone.utc), records_total=len(records))
    result.log_start()

    for record in records:
        record_result = reconcile_record(ctx, record)
        logger.info(
            f"Mapping '{record_result.record_name}' finished with status {record_result.status.value}",
            extra={
                "operation": "record_complete",
                "status": record_result.status.value,
                "stage": record_result.stage.value,
                "to_add": record_result.to_add,
                "to_remove": record_result.to_remove,
                "devices_added": record_result.devices_added,
                "devices_removed": record_result.devices_removed,
            },
        )
        result.add_record_result(record_result)

    return _finalize_result(result)
