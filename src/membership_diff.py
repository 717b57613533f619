"""Computes the membership changes needed to move a device group to its desired state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from config import get_logger
from graph import EmptyResult

if TYPE_CHECKING:
    from entities import Device
    from graph import PagedResult

logger = get_logger(service="membership_diff")


@dataclass(frozen=True)
class CurrentMembership:
    """Membership of the target group as read at the start of the record.

    Attributes:
        member_ids: Directory object IDs currently in the group.
        reported_empty: True when the backend answered with the empty sentinel.
    """

    member_ids: frozenset[str]
    reported_empty: bool = False


@dataclass(frozen=True)
class MembershipDiff:
    to_add: frozenset[str]
    to_remove: frozenset[str]

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def current_membership(result: PagedResult) -> CurrentMembership:
    if isinstance(result, EmptyResult):
        return CurrentMembership(member_ids=frozenset(), reported_empty=True)
    return CurrentMembership(
        member_ids=frozenset(item["id"] for item in result.items if isinstance(item, dict) and item.get("id")),
    )


def compute_diff(desired: Iterable[Device], current: CurrentMembership) -> MembershipDiff:
    """Compute add and remove sets between desired devices and current members.

    Args:
        desired: Devices that should be members of the group.
        current: The group's membership as read before any write.

    Returns:
        MembershipDiff with IDs to add and IDs to remove. The remove set is
        always empty when the group was reported as having no members.
    """
    desired_ids = frozenset(device.id for device in desired)
    to_add = desired_ids - current.member_ids
    if current.reported_empty:
        to_remove: frozenset[str] = frozenset()
    else:
        to_remove = current.member_ids - desired_ids

    logger.info(
        f"Desired members={len(desired_ids)}, current members={len(current.member_ids)}, "
        f"to add={len(to_add)}, to remove={len(to_remove)}",
        extra={"operation": "compute_diff", "reported_empty": current.reported_empty},
    )
    return MembershipDiff(to_add=to_add, to_remove=to_remove)
