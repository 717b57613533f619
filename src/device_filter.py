"""Filter pipeline narrowing candidate devices down to the desired group members.

Stages run in a fixed order (baseline, compliance, enrollment profile). Each stage
receives exactly the output of the previous one and never widens it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence

from config import get_logger

if TYPE_CHECKING:
    from entities import Device, MappingRecord

logger = get_logger(service="device_filter")

REQUIRED_OPERATING_SYSTEM = "Windows"
REQUIRED_MANAGEMENT_TYPE = "MDM"


def _normalize_for_comparison(value: str | None) -> str:
    return value.casefold() if value else ""


def matches_enrollment_profile(profile_name: str | None, patterns: Sequence[str]) -> bool:
    """Check if a profile name contains any of the patterns.

    Matching is a literal, case-insensitive substring test. Characters with a
    meaning in regular expressions are matched as themselves.
    """
    name = _normalize_for_comparison(profile_name)
    if not name:
        return False
    return any(_normalize_for_comparison(pattern) in name for pattern in patterns if pattern)


def is_baseline_device(device: Device) -> bool:
    return (
        device.operating_system == REQUIRED_OPERATING_SYSTEM
        and device.is_managed is True
        and device.management_type == REQUIRED_MANAGEMENT_TYPE
    )


def is_compliant_device(device: Device) -> bool:
    return device.is_compliant is True


@dataclass(frozen=True)
class FilterStage:
    name: str
    applies: Callable[[MappingRecord], bool]
    build_predicate: Callable[[MappingRecord], Callable[[Device], bool]]

    def run(self, devices: list[Device], record: MappingRecord) -> list[Device]:
        predicate = self.build_predicate(record)
        kept = [device for device in devices if predicate(device)]
        removed = len(devices) - len(kept)
        logger.info(
            f"Filter stage '{self.name}' removed {removed} of {len(devices)} device(s)",
            extra={
                "operation": "filter_devices",
                "stage": self.name,
                "device_group_id": record.device_group_id,
                "before": len(devices),
                "after": len(kept),
                "removed": removed,
            },
        )
        return kept


def _enrollment_predicate(record: MappingRecord) -> Callable[[Device], bool]:
    patterns = record.enrollment_profile_patterns
    return lambda device: matches_enrollment_profile(device.enrollment_profile_name, patterns)


PIPELINE: tuple[FilterStage, ...] = (
    FilterStage(
        name="baseline",
        applies=lambda record: True,
        build_predicate=lambda record: is_baseline_device,
    ),
    FilterStage(
        name="compliance",
        applies=lambda record: record.require_compliant,
        build_predicate=lambda record: is_compliant_device,
    ),
    FilterStage(
        name="enrollment_profile",
        applies=lambda record: bool(record.enrollment_profile_patterns),
        build_predicate=_enrollment_predicate,
    ),
)


def applicable_stages(record: MappingRecord) -> list[FilterStage]:
    return [stage for stage in PIPELINE if stage.applies(record)]


def filter_devices(candidates: Sequence[Device], record: MappingRecord) -> list[Device]:
    devices = list(candidates)
    for stage in applicable_stages(record):
        devices = stage.run(devices, record)
    return devices
