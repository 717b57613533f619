"""Applies a precomputed membership diff to a device group.

Additions are bound in chunks of at most GRAPH_BATCH_LIMIT references per
request. Removals go one DELETE per member since Graph has no bulk unbind.
A chunk rejected because one of its references already exists is retried
one reference at a time. A failure only affects its own chunk or member.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from config import GRAPH_BATCH_LIMIT, get_logger
from errors import GraphApiError
from utils import chunked

if TYPE_CHECKING:
    from graph import GraphClient
    from membership_diff import MembershipDiff

logger = get_logger(service="batch_executor")

_HTTP_BAD_REQUEST = 400
_HTTP_NOT_FOUND = 404
_ALREADY_EXISTS_MARKER = "already exist"


class StageStatus(Enum):
    success = "success"
    partial = "partial"
    failure = "failure"


@dataclass(frozen=True)
class FailedAddBatch:
    index: int
    object_ids: tuple[str, ...]
    error: str


@dataclass(frozen=True)
class FailedRemoval:
    object_id: str
    error: str


@dataclass
class ApplyOutcome:
    added: int = 0
    already_present: int = 0
    removed: int = 0
    already_absent: int = 0
    add_batches_sent: int = 0
    rejected_as_duplicate: int = 0
    failed_batches: list[FailedAddBatch] = field(default_factory=list)
    failed_removals: list[FailedRemoval] = field(default_factory=list)

    @property
    def status(self) -> StageStatus:
        if not self.failed_batches and not self.failed_removals:
            return StageStatus.success
        if self.added or self.already_present or self.removed or self.already_absent:
            return StageStatus.partial
        return StageStatus.failure

    def errors(self, group_name: str) -> list[str]:
        messages = [
            f"Failed to add {len(batch.object_ids)} device(s) to {group_name} (batch {batch.index}): {batch.error}"
            for batch in self.failed_batches
        ]
        messages.extend(
            f"Failed to remove device {removal.object_id} from {group_name}: {removal.error}" for removal in self.failed_removals
        )
        return messages


def _is_duplicate_reference(error: GraphApiError) -> bool:
    return error.status_code == _HTTP_BAD_REQUEST and _ALREADY_EXISTS_MARKER in error.message.lower()


def _add_one_at_a_time(
    client: GraphClient,
    group_id: str,
    chunk: Sequence[str],
    index: int,
    outcome: ApplyOutcome,
) -> None:
    for object_id in chunk:
        try:
            client.add_members(group_id, [object_id])
            outcome.added += 1
        except GraphApiError as e:
            if _is_duplicate_reference(e):
                outcome.already_present += 1
                continue
            logger.warning(
                f"Failed to add device {object_id} to group {group_id} after batch {index} was rejected: {e}",
                extra={"operation": "add_members", "group_id": group_id, "batch": index, "object_id": object_id},
            )
            outcome.failed_batches.append(FailedAddBatch(index=index, object_ids=(object_id,), error=str(e)))


def _add_members(
    client: GraphClient,
    group_id: str,
    object_ids: list[str],
    batch_size: int,
    outcome: ApplyOutcome,
) -> None:
    total = len(object_ids)
    processed = 0
    for index, chunk in enumerate(chunked(object_ids, batch_size), start=1):
        outcome.add_batches_sent += 1
        try:
            client.add_members(group_id, list(chunk))
            outcome.added += len(chunk)
            logger.info(
                f"Added batch {index} of {len(chunk)} device(s) to group {group_id}",
                extra={"operation": "add_members", "group_id": group_id, "batch": index, "batch_size": len(chunk)},
            )
        except GraphApiError as e:
            if _is_duplicate_reference(e) and len(chunk) == 1:
                outcome.already_present += 1
                logger.info(f"Device {chunk[0]} is already a member of group {group_id}")
            elif _is_duplicate_reference(e):
                # Graph rejects the whole bind when any reference already exists
                logger.warning(
                    f"Batch {index} for group {group_id} was rejected for an existing member, retrying {len(chunk)} device(s) one by one",
                    extra={"operation": "add_members", "group_id": group_id, "batch": index, "object_ids": list(chunk)},
                )
                outcome.rejected_as_duplicate += 1
                _add_one_at_a_time(client, group_id, chunk, index, outcome)
            else:
                logger.warning(
                    f"Failed to add batch {index} of {len(chunk)} device(s) to group {group_id}: {e}",
                    extra={"operation": "add_members", "group_id": group_id, "batch": index, "batch_size": len(chunk)},
                )
                outcome.failed_batches.append(FailedAddBatch(index=index, object_ids=tuple(chunk), error=str(e)))
        processed += len(chunk)
        logger.debug(f"Processed {processed}/{total} additions for group {group_id}")


def _remove_members(client: GraphClient, group_id: str, object_ids: list[str], outcome: ApplyOutcome) -> None:
    for object_id in object_ids:
        try:
            client.remove_member(group_id, object_id)
            outcome.removed += 1
            logger.info(
                f"Removed device {object_id} from group {group_id}",
                extra={"operation": "remove_member", "group_id": group_id, "object_id": object_id},
            )
        except GraphApiError as e:
            if e.status_code == _HTTP_NOT_FOUND:
                outcome.already_absent += 1
                logger.info(f"Device {object_id} is no longer a member of group {group_id}")
                continue
            logger.warning(
                f"Failed to remove device {object_id} from group {group_id}: {e}",
                extra={"operation": "remove_member", "group_id": group_id, "object_id": object_id},
            )
            outcome.failed_removals.append(FailedRemoval(object_id=object_id, error=str(e)))


def apply_diff(
    client: GraphClient,
    group_id: str,
    diff: MembershipDiff,
    batch_size: int = GRAPH_BATCH_LIMIT,
) -> ApplyOutcome:
    """Apply additions and removals to a group without re-reading its membership.

    Args:
        client: Graph client.
        group_id: Target device group ID.
        diff: Changes computed for this group.
        batch_size: Maximum references bound per request.

    Returns:
        ApplyOutcome with counts and the failed batches and members.
    """
    outcome = ApplyOutcome()
    if diff.to_add:
        _add_members(client, group_id, sorted(diff.to_add), batch_size, outcome)
    if diff.to_remove:
        _remove_members(client, group_id, sorted(diff.to_remove), outcome)
    return outcome
