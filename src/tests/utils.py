import json
import uuid
from unittest.mock import MagicMock

from aws_lambda_powertools.utilities.typing import LambdaContext

from entities import Device, MappingRecord


def make_device(
    device_id: str | None = None,
    operating_system: str = "Windows",
    is_managed: bool = True,
    management_type: str = "MDM",
    is_compliant: bool = True,
    enrollment_profile_name: str | None = None,
) -> Device:
    return Device(
        id=device_id or str(uuid.uuid4()),
        operating_system=operating_system,
        is_managed=is_managed,
        management_type=management_type,
        is_compliant=is_compliant,
        enrollment_profile_name=enrollment_profile_name,
    )


def graph_device(device_id: str, **overrides) -> dict:  # noqa: ANN003
    raw = {
        "@odata.type": "#microsoft.graph.device",
        "id": device_id,
        "displayName": f"PC-{device_id}",
        "operatingSystem": "Windows",
        "isManaged": True,
        "managementType": "MDM",
        "isCompliant": True,
        "enrollmentProfileName": "Autopilot-Standard",
    }
    return raw | overrides


def graph_user(user_id: str) -> dict:
    return {"@odata.type": "#microsoft.graph.user", "id": user_id, "userPrincipalName": f"{user_id}@example.com"}


def make_record(**overrides) -> MappingRecord:  # noqa: ANN003
    fields = {
        "UserGroupId": "user-group-1",
        "UserGroupName": "Engineering Users",
        "DeviceGroupId": "device-group-1",
        "DeviceGroupName": "Engineering Devices",
        "State": "Active",
        "RequireCompliant": False,
        "EnrollmentProfileFilter": None,
    }
    return MappingRecord.model_validate(fields | overrides)


def http_response(status_code: int = 200, body: object = None, reason: str = "OK") -> MagicMock:
    """Build a stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    response.url = "https://graph.microsoft.com/beta/test"
    if body is None:
        response.json.side_effect = ValueError("No JSON body")
        response.text = ""
    else:
        response.json.return_value = body
        response.text = json.dumps(body)
    return response


class LambdaTestContext(LambdaContext):
    def __init__(self, name: str, version: int = 1, region: str = "us-east-1", account_id: str = "111122223333"):
        self._function_name = name
        self._function_version = str(version)
        self._memory_limit_in_mb = 128
        self._invoked_function_arn = f"arn:aws:lambda:{region}:{account_id}:function:{name}:{version}"
        self._aws_request_id = str(uuid.uuid4())
        self._log_group_name = f"/aws/lambda/{name}"
        self._log_stream_name = str(uuid.uuid4())
