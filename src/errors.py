class DeviceGroupSyncError(Exception):
    ...


class ConfigurationError(DeviceGroupSyncError):
    ...


class MappingStoreError(ConfigurationError):
    ...


class CredentialError(DeviceGroupSyncError):
    ...


class GraphApiError(DeviceGroupSyncError):
    """Raised when a Microsoft Graph call fails or returns an unexpected shape."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"HTTP {self.status_code}: {self.message}"


class MembershipReadError(GraphApiError):
    """Raised when the member list of a group cannot be read."""
