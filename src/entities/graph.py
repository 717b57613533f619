from typing import Any, Optional

from pydantic import Field

from .model import BaseModel

USER_ODATA_TYPE = "#microsoft.graph.user"


class Identity(BaseModel):
    """A member of the source user group."""

    id: str
    odata_type: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict, repr=False)

    @property
    def is_user(self) -> bool:
        # Members returned without a type annotation are assumed to be users
        return self.odata_type is None or self.odata_type == USER_ODATA_TYPE

    @classmethod
    def from_graph(cls, raw: dict[str, Any]) -> "Identity":
        return cls(id=raw["id"], odata_type=raw.get("@odata.type"), attributes=raw)


class Device(BaseModel):
    """A device object as returned by users/{id}/registeredDevices."""

    id: str
    display_name: Optional[str] = None
    operating_system: Optional[str] = None
    is_managed: Optional[bool] = None
    management_type: Optional[str] = None
    is_compliant: Optional[bool] = None
    enrollment_profile_name: Optional[str] = None

    @classmethod
    def from_graph(cls, raw: dict[str, Any]) -> "Device":
        return cls(
            id=raw["id"],
            display_name=raw.get("displayName"),
            operating_system=raw.get("operatingSystem"),
            is_managed=raw.get("isManaged"),
            management_type=raw.get("managementType"),
            is_compliant=raw.get("isCompliant"),
            enrollment_profile_name=raw.get("enrollmentProfileName"),
        )
