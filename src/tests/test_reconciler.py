"""Tests for reconciling mapping records end to end against a mocked Graph client."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from hypothesis import given, settings, strategies as st

from errors import GraphApiError, MembershipReadError
from graph import EmptyResult, Page
from reconciler import (
    RecordResult,
    RecordStatus,
    Stage,
    SyncContext,
    SyncOperationResult,
    perform_sync,
    reconcile_record,
)

from .utils import graph_device, graph_user, make_record


def _device_lookup(devices_by_user: dict[str, list[dict]]):
    def batch(sub_requests):
        responses = []
        for request in sub_requests:
            user_id = request["Url"].split("/")[1]
            responses.append({"id": str(request["Id"]), "status": 200, "body": {"value": devices_by_user.get(user_id, [])}})
        return responses

    return batch


def _members(memberships: dict[str, object]):
    def read_group_members(group_id):
        value = memberships[group_id]
        if isinstance(value, Exception):
            raise value
        return value

    return read_group_members


@pytest.fixture
def directory(graph_client):
    """Graph client wired with one user group (u1, u2) and one device group (d2, d4)."""
    graph_client.read_group_members.side_effect = _members(
        {
            "user-group-1": Page(items=(graph_user("u1"), graph_user("u2"))),
            "device-group-1": Page(items=({"id": "d2"}, {"id": "d4"})),
        }
    )
    graph_client.batch.side_effect = _device_lookup(
        {
            "u1": [graph_device("d1"), graph_device("d2")],
            "u2": [graph_device("d3"), graph_device("ios", operatingSystem="iOS")],
        }
    )
    return graph_client


class TestReconcileRecord:
    def test_converges_device_group(self, directory):
        result = reconcile_record(SyncContext(client=directory), make_record())

        assert result.status is RecordStatus.succeeded
        assert result.stage is Stage.done
        assert result.members == 2
        assert result.candidate_devices == 4
        assert result.desired_devices == 3
        assert result.current_members == 2
        directory.add_members.assert_called_once_with("device-group-1", ["d1", "d3"])
        directory.remove_member.assert_called_once_with("device-group-1", "d4")
        assert result.devices_added == 2
        assert result.devices_removed == 1

    def test_inactive_record_makes_no_remote_calls(self, graph_client):
        result = reconcile_record(SyncContext(client=graph_client), make_record(State="Inactive"))

        assert result.status is RecordStatus.skipped
        assert graph_client.mock_calls == []

    def test_empty_user_group_is_skipped(self, graph_client):
        graph_client.read_group_members.side_effect = _members({"user-group-1": EmptyResult()})

        result = reconcile_record(SyncContext(client=graph_client), make_record())

        assert result.status is RecordStatus.skipped
        graph_client.batch.assert_not_called()
        graph_client.add_members.assert_not_called()
        graph_client.remove_member.assert_not_called()

    def test_user_group_read_failure_fails_record(self, graph_client):
        graph_client.read_group_members.side_effect = MembershipReadError("Group not found", status_code=404)

        result = reconcile_record(SyncContext(client=graph_client), make_record())

        assert result.status is RecordStatus.failed
        assert result.stage is Stage.resolve_users
        assert len(result.errors) == 1
        graph_client.batch.assert_not_called()

    def test_device_group_read_failure_fails_record_without_writes(self, directory):
        directory.read_group_members.side_effect = _members(
            {
                "user-group-1": Page(items=(graph_user("u1"),)),
                "device-group-1": MembershipReadError("Service unavailable", status_code=503),
            }
        )

        result = reconcile_record(SyncContext(client=directory), make_record())

        assert result.status is RecordStatus.failed
        assert result.stage is Stage.read_current_membership
        directory.add_members.assert_not_called()
        directory.remove_member.assert_not_called()

    def test_empty_sentinel_device_group_is_never_pruned(self, directory):
        directory.read_group_members.side_effect = _members(
            {
                "user-group-1": Page(items=(graph_user("u1"),)),
                "device-group-1": EmptyResult(),
            }
        )

        result = reconcile_record(SyncContext(client=directory), make_record())

        directory.add_members.assert_called_once_with("device-group-1", ["d1", "d2"])
        directory.remove_member.assert_not_called()
        assert result.status is RecordStatus.succeeded

    def test_dry_run_computes_but_does_not_write(self, directory):
        result = reconcile_record(SyncContext(client=directory, dry_run=True), make_record())

        assert result.to_add == 2
        assert result.to_remove == 1
        assert result.devices_added == 0
        directory.add_members.assert_not_called()
        directory.remove_member.assert_not_called()

    def test_in_sync_group_makes_no_writes(self, directory):
        directory.read_group_members.side_effect = _members(
            {
                "user-group-1": Page(items=(graph_user("u1"), graph_user("u2"))),
                "device-group-1": Page(items=({"id": "d1"}, {"id": "d2"}, {"id": "d3"})),
            }
        )

        result = reconcile_record(SyncContext(client=directory), make_record())

        assert result.status is RecordStatus.succeeded
        directory.add_members.assert_not_called()
        directory.remove_member.assert_not_called()

    def test_failed_lookup_chunk_makes_record_partial(self, directory):
        directory.batch.side_effect = GraphApiError("Too many requests", status_code=429)

        result = reconcile_record(SyncContext(client=directory), make_record())

        assert result.status is RecordStatus.partial
        assert result.candidate_devices == 0
        assert any("Device lookup batch 1" in error for error in result.errors)

    def test_throttled_member_lookup_makes_record_partial(self, directory):
        directory.batch.side_effect = lambda sub_requests: [
            {"id": "1", "status": 200, "body": {"value": [graph_device("d1")]}},
            {"id": "2", "status": 429, "body": {"error": {"code": "TooManyRequests"}}},
        ]
        directory.read_group_members.side_effect = _members(
            {
                "user-group-1": Page(items=(graph_user("u1"), graph_user("u2"))),
                "device-group-1": Page(items=({"id": "d1"}, {"id": "d2"})),
            }
        )

        result = reconcile_record(SyncContext(client=directory), make_record())

        assert result.status is RecordStatus.partial
        assert len(result.errors) == 1
        assert "u2" in result.errors[0]
        assert "429" in result.errors[0]

    def test_device_shared_by_two_users_is_counted_once(self, directory):
        directory.batch.side_effect = _device_lookup(
            {
                "u1": [graph_device("d1"), graph_device("d2")],
                "u2": [graph_device("d1")],
            }
        )

        result = reconcile_record(SyncContext(client=directory), make_record())

        assert result.candidate_devices == 3
        assert result.desired_devices == 2
        directory.add_members.assert_called_once_with("device-group-1", ["d1"])

    def test_unexpected_error_keeps_stage_and_counts(self, directory):
        directory.batch.side_effect = RuntimeError("bug")

        with patch("reconciler.logger") as mock_logger:
            result = reconcile_record(SyncContext(client=directory), make_record())

        assert result.status is RecordStatus.failed
        assert result.stage is Stage.resolve_devices
        assert result.members == 2
        assert "unexpected error during resolve_devices" in result.errors[0]
        mock_logger.exception.assert_called_once()
        directory.add_members.assert_not_called()
        directory.remove_member.assert_not_called()

    def test_failed_write_makes_record_partial(self, directory):
        directory.remove_member.side_effect = GraphApiError("Forbidden", status_code=403)

        result = reconcile_record(SyncContext(client=directory), make_record())

        assert result.status is RecordStatus.partial
        assert result.devices_added == 2
        assert result.devices_removed == 0

    def test_compliance_and_profile_filters_apply(self, directory):
        directory.batch.side_effect = _device_lookup(
            {
                "u1": [
                    graph_device("d1", isCompliant=False),
                    graph_device("d2", enrollmentProfileName="Kiosk"),
                    graph_device("d5", enrollmentProfileName="autopilot-eu"),
                ]
            }
        )

        record = make_record(RequireCompliant=True, EnrollmentProfileFilter="Autopilot")
        result = reconcile_record(SyncContext(client=directory), record)

        assert result.desired_devices == 1
        directory.add_members.assert_called_once_with("device-group-1", ["d5"])
        removed = sorted(call.args[1] for call in directory.remove_member.call_args_list)
        assert removed == ["d2", "d4"]


class TestPerformSync:
    def test_failure_in_one_record_does_not_stop_the_next(self, directory):
        directory.read_group_members.side_effect = _members(
            {
                "broken-users": MembershipReadError("Group not found", status_code=404),
                "user-group-1": Page(items=(graph_user("u1"), graph_user("u2"))),
                "device-group-1": Page(items=({"id": "d2"}, {"id": "d4"})),
            }
        )
        records = [
            make_record(UserGroupId="broken-users", UserGroupName="Broken"),
            make_record(State="Inactive"),
            make_record(),
        ]

        result = perform_sync(SyncContext(client=directory), records)

        assert [r.status for r in result.record_results] == [RecordStatus.failed, RecordStatus.skipped, RecordStatus.succeeded]
        assert result.records_total == 3
        assert result.records_processed == 2
        assert result.records_skipped == 1
        assert result.records_failed == 1
        assert result.devices_added == 2
        assert result.devices_removed == 1
        assert result.success is False
        assert result.end_time is not None

    def test_unexpected_error_is_contained_to_its_record(self, directory):
        directory.read_group_members.side_effect = [
            RuntimeError("bug"),
            Page(items=(graph_user("u1"), graph_user("u2"))),
            Page(items=({"id": "d2"}, {"id": "d4"})),
        ]

        with patch("reconciler.logger") as mock_logger:
            result = perform_sync(SyncContext(client=directory), [make_record(), make_record()])

        assert [r.status for r in result.record_results] == [RecordStatus.failed, RecordStatus.succeeded]
        mock_logger.exception.assert_called_once()

    def test_no_records_is_a_successful_pass(self, graph_client):
        result = perform_sync(SyncContext(client=graph_client), [])

        assert result.success is True
        assert result.records_total == 0
        assert not result.has_changes


class TestSyncOperationResult:
    def test_log_start(self):
        start_time = datetime.now(timezone.utc)
        result = SyncOperationResult(start_time=start_time, records_total=4)

        with patch("reconciler.logger") as mock_logger:
            result.log_start()

        mock_logger.info.assert_called_once()
        assert "started" in mock_logger.info.call_args[0][0].lower()
        extra = mock_logger.info.call_args[1]["extra"]
        assert extra["start_time"] == start_time.isoformat()
        assert extra["records_total"] == 4

    @settings(max_examples=100)
    @given(
        added=st.lists(st.integers(min_value=0, max_value=50), max_size=10),
        errors=st.lists(st.text(min_size=1, max_size=30), max_size=5),
    )
    def test_completion_logs_statistics(self, added: list[int], errors: list[str]):
        result = SyncOperationResult(start_time=datetime.now(timezone.utc))
        for count in added:
            result.add_record_result(RecordResult(record_name="r", device_group_id="g", devices_added=count))
        record_with_errors = RecordResult(record_name="r", device_group_id="g")
        for error in errors:
            record_with_errors.mark_partial(error)
        result.add_record_result(record_with_errors)
        result.end_time = datetime.now(timezone.utc)

        with patch("reconciler.logger") as mock_logger:
            result.log_completion()

        extra = mock_logger.info.call_args[1]["extra"]
        assert extra["devices_added"] == sum(added)
        assert extra["records_processed"] == len(added) + 1
        assert extra["error_count"] == len(errors)
        assert extra["duration_ms"] >= 0

    def test_summary_preserves_fields(self):
        result = SyncOperationResult(
            start_time=datetime.now(timezone.utc),
            records_total=3,
            records_processed=2,
            records_skipped=1,
            records_failed=1,
            devices_added=5,
            devices_removed=2,
            errors=["boom"],
        )

        summary = result.to_summary()

        assert summary.records_total == 3
        assert summary.records_processed == 2
        assert summary.records_skipped == 1
        assert summary.records_failed == 1
        assert summary.devices_added == 5
        assert summary.devices_removed == 2
        assert summary.errors == ["boom"]
