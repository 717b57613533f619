import os
from unittest.mock import MagicMock

import boto3
import pytest


def pytest_sessionstart(session):  # noqa: ANN201, ARG001, ANN001
    mock_env = {
        "graph_tenant_id": "00000000-0000-0000-0000-000000000001",
        "graph_client_id": "00000000-0000-0000-0000-000000000002",
        "graph_client_secret": "x",
        "graph_base_url": "https://graph.microsoft.com/beta/",
        "mapping_table_name": "device-group-sync-mappings",
        "mapping_partition_key": "DeviceGroupSync",
        "log_level": "DEBUG",
        "post_update_to_slack": "true",
        "slack_bot_token": "x",
        "slack_channel_id": "C0000000",
    }
    os.environ |= mock_env

    boto3.setup_default_session(region_name="us-east-1")


@pytest.fixture
def graph_client():
    """Returns a mock GraphClient with empty defaults for every call."""
    from graph import Page

    client = MagicMock()
    client.read_group_members.return_value = Page(items=())
    client.batch.return_value = []
    client.directory_object_url.side_effect = lambda object_id: f"https://graph.microsoft.com/beta/directoryObjects/{object_id}"
    return client
