from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field, field_validator

from .model import BaseModel


class MappingState(Enum):
    Active = "Active"
    Inactive = "Inactive"


class MappingRecord(BaseModel):
    """One configured (user group, device group, filter) reconciliation unit.

    Field aliases follow the attribute names of the mapping table items, so a raw
    DynamoDB item can be validated directly.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_group_id: str = Field(alias="UserGroupId")
    user_group_name: str = Field(default="", alias="UserGroupName")
    device_group_id: str = Field(alias="DeviceGroupId")
    device_group_name: str = Field(default="", alias="DeviceGroupName")
    state: MappingState = Field(default=MappingState.Inactive, alias="State")
    require_compliant: bool = Field(default=False, alias="RequireCompliant")
    enrollment_profile_filter: Optional[str] = Field(default=None, alias="EnrollmentProfileFilter")

    @field_validator("state", mode="before")
    @classmethod
    def normalize_state(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().capitalize()
        return v

    @field_validator("require_compliant", mode="before")
    @classmethod
    def parse_bool_string(cls, v: object) -> object:
        # Table items written by hand often carry booleans as strings
        if isinstance(v, str):
            return v.strip().lower() in ("true", "1", "yes")
        return v

    @property
    def is_active(self) -> bool:
        return self.state is MappingState.Active

    @property
    def enrollment_profile_patterns(self) -> tuple[str, ...]:
        if not self.enrollment_profile_filter:
            return ()
        patterns: list[str] = []
        for fragment in self.enrollment_profile_filter.split(";"):
            fragment = fragment.strip()
            if fragment and fragment not in patterns:
                patterns.append(fragment)
        return tuple(patterns)

    @property
    def display_name(self) -> str:
        user_group = self.user_group_name or self.user_group_id
        device_group = self.device_group_name or self.device_group_id
        return f"{user_group} -> {device_group}"
