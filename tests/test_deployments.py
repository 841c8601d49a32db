"""
Tests for orgrollout.deployments module.

Tests for the in-memory and DynamoDB deployment records.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

from orgrollout.deployments import DynamoDBDeploymentStore, InMemoryDeploymentStore
from orgrollout.enums import OperationState, PermissionModel
from orgrollout.types import DeploymentOperation

SUBMITTED_AT = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _operation(operation_id: str = "op-1") -> DeploymentOperation:
    return DeploymentOperation(
        operation_id=operation_id,
        organization_id="o-test",
        stack_set_name="orgrollout-org-o-test",
        target_account_ids=frozenset({"333333333333", "222222222222"}),
        submitted_at=SUBMITTED_AT,
        region="eu-west-1",
        role_name="OrgRolloutReadOnlyRole",
        external_id="ext-123",
        permission_model=PermissionModel.SERVICE_MANAGED,
    )


class TestInMemoryDeploymentStore:
    """Test InMemoryDeploymentStore."""

    def test_unknown_organization(self) -> None:
        assert InMemoryDeploymentStore().latest("o-test") is None

    def test_latest_replaces_previous(self) -> None:
        store = InMemoryDeploymentStore()
        store.save(_operation("op-1"))
        store.save(_operation("op-2"))

        latest = store.latest("o-test")

        assert latest is not None
        assert latest.operation_id == "op-2"

    def test_aggregate_state_not_recorded(self) -> None:
        store = InMemoryDeploymentStore()
        operation = _operation()
        operation.state = OperationState.CONVERGED_SUCCESS
        operation.poll_count = 4
        operation.synced = True
        store.save(operation)

        latest = store.latest("o-test")

        assert latest is not None
        assert latest.state == OperationState.SUBMITTED
        assert latest.poll_count == 0
        assert latest.synced is False
        assert latest.target_account_ids == operation.target_account_ids


class TestDynamoDBDeploymentStore:
    """Test DynamoDBDeploymentStore."""

    def _store(self) -> tuple:
        client = MagicMock()
        session = MagicMock()
        session.client.return_value = client
        return DynamoDBDeploymentStore("orgrollout-deployments", session=session, region="eu-west-1"), client

    def test_save_writes_item_keyed_by_organization(self) -> None:
        store, client = self._store()

        store.save(_operation())

        item = client.put_item.call_args.kwargs["Item"]
        assert client.put_item.call_args.kwargs["TableName"] == "orgrollout-deployments"
        assert item["organizationId"] == {"S": "o-test"}
        assert item["operationId"] == {"S": "op-1"}
        assert item["targetAccountIds"] == {"SS": ["222222222222", "333333333333"]}
        assert item["permissionModel"] == {"S": "SERVICE_MANAGED"}

    def test_latest_reads_item_back(self) -> None:
        store, client = self._store()
        store.save(_operation())
        client.get_item.return_value = {"Item": client.put_item.call_args.kwargs["Item"]}

        latest = store.latest("o-test")

        client.get_item.assert_called_once_with(
            TableName="orgrollout-deployments",
            Key={"organizationId": {"S": "o-test"}},
            ConsistentRead=True,
        )
        assert latest == _operation()

    def test_latest_missing(self) -> None:
        store, client = self._store()
        client.get_item.return_value = {}

        assert store.latest("o-test") is None
