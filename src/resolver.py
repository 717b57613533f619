"""Resolves a user group into the devices registered to its members.

Members are looked up through JSON batching, one sub-request per member and at
most GRAPH_BATCH_LIMIT sub-requests per batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

from config import GRAPH_BATCH_LIMIT, get_logger
from entities import Device, Identity
from errors import GraphApiError
from graph import EmptyResult
from utils import chunked

if TYPE_CHECKING:
    from graph import GraphClient

logger = get_logger(service="resolver")

_HTTP_ERROR_STATUS = 400


@dataclass(frozen=True)
class FailedChunk:
    index: int
    member_ids: tuple[str, ...]
    error: str


@dataclass(frozen=True)
class FailedLookup:
    """A single member whose sub-request came back with an error status."""

    chunk_index: int
    member_id: str
    status: int


@dataclass
class DeviceResolution:
    """Candidate devices of a user group, before filtering.

    Attributes:
        devices: Flattened devices from every successful sub-response.
        batches_sent: Number of batch requests issued.
        failed_chunks: Chunks whose batch request failed; their devices are missing.
        failed_lookups: Members whose own sub-request failed inside a successful batch.
    """

    devices: list[Device] = field(default_factory=list)
    batches_sent: int = 0
    failed_chunks: list[FailedChunk] = field(default_factory=list)
    failed_lookups: list[FailedLookup] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_chunks or self.failed_lookups)


def resolve_user_members(client: GraphClient, group_id: str) -> list[Identity]:
    """Read the members of the source user group.

    Raises:
        MembershipReadError: If the member list cannot be read.
    """
    result = client.read_group_members(group_id)
    if isinstance(result, EmptyResult):
        return []

    members: list[Identity] = []
    for raw in result.items:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.debug(f"Skipping member without id in group {group_id}")
            continue
        identity = Identity.from_graph(raw)
        if not identity.is_user:
            logger.debug(f"Skipping non-user member {identity.id} ({identity.odata_type}) of group {group_id}")
            continue
        members.append(identity)
    return members


def build_batch_requests(chunk: Sequence[Identity]) -> list[dict]:
    return [
        {"Id": number, "Method": "GET", "Url": f"users/{member.id}/registeredDevices"}
        for number, member in enumerate(chunk, start=1)
    ]


def _collect_responses(
    responses: list[dict],
    chunk: Sequence[Identity],
    chunk_index: int,
    resolution: DeviceResolution,
) -> None:
    member_by_request_id = {str(number): member.id for number, member in enumerate(chunk, start=1)}
    for response in responses:
        if not response:
            continue
        status = response.get("status")
        if isinstance(status, int) and status >= _HTTP_ERROR_STATUS:
            member_id = member_by_request_id.get(str(response.get("id")), "<unknown>")
            logger.warning(
                f"Device lookup for member {member_id} in chunk {chunk_index} returned status {status}",
                extra={"operation": "resolve_devices", "chunk": chunk_index, "member_id": member_id, "status": status},
            )
            resolution.failed_lookups.append(FailedLookup(chunk_index=chunk_index, member_id=member_id, status=status))
            continue
        body = response.get("body")
        if not isinstance(body, dict):
            continue
        for raw in body.get("value") or []:
            if isinstance(raw, dict) and raw.get("id"):
                resolution.devices.append(Device.from_graph(raw))


def resolve_devices(
    client: GraphClient,
    members: Sequence[Identity],
    batch_size: int = GRAPH_BATCH_LIMIT,
) -> DeviceResolution:
    """Look up the registered devices of every member.

    A failing batch or sub-request is logged and recorded, and its devices are
    left out of the result; the remaining batches still run.
    """
    resolution = DeviceResolution()
    for index, chunk in enumerate(chunked(members, batch_size), start=1):
        resolution.batches_sent += 1
        try:
            responses = client.batch(build_batch_requests(chunk))
        except GraphApiError as e:
            logger.warning(
                f"Device lookup batch {index} failed, {len(chunk)} member(s) skipped: {e}",
                extra={"operation": "resolve_devices", "chunk": index, "chunk_size": len(chunk)},
            )
            resolution.failed_chunks.append(
                FailedChunk(index=index, member_ids=tuple(member.id for member in chunk), error=str(e))
            )
            continue
        _collect_responses(responses, chunk, index, resolution)

    logger.info(
        f"Resolved {len(resolution.devices)} candidate devices for {len(members)} members "
        f"in {resolution.batches_sent} batch(es), {len(resolution.failed_chunks)} failed batch(es), "
        f"{len(resolution.failed_lookups)} failed lookup(s)"
    )
    return resolution
