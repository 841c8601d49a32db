"""
Deployment records.

The latest submitted operation of each organization, kept so that status
and sync calls can be answered by organization ID alone, including from a
process that did not submit the deployment. A newer operation for the same
organization replaces the older record.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from boto3.session import Session
from mypy_boto3_dynamodb.client import DynamoDBClient

from .enums import PermissionModel
from .types import DeploymentOperation

logger = logging.getLogger(__name__)


def _fresh_copy(operation: DeploymentOperation) -> DeploymentOperation:
    # Only the submission identity is stored; aggregate state is rebuilt by polling
    return DeploymentOperation(
        operation_id=operation.operation_id,
        organization_id=operation.organization_id,
        stack_set_name=operation.stack_set_name,
        target_account_ids=operation.target_account_ids,
        submitted_at=operation.submitted_at,
        region=operation.region,
        role_name=operation.role_name,
        external_id=operation.external_id,
        permission_model=operation.permission_model,
    )


class DeploymentStore(ABC):
    """Latest deployment operation per organization."""

    @abstractmethod
    def save(self, operation: DeploymentOperation) -> None:
        """Record operation as the latest one of its organization."""

    @abstractmethod
    def latest(self, organization_id: str) -> Optional[DeploymentOperation]:
        """
        Return the latest recorded operation of an organization.

        Returns:
            A DeploymentOperation in the SUBMITTED state, or None
        """


class InMemoryDeploymentStore(DeploymentStore):
    """Process-local deployment records, safe to share between threads."""

    def __init__(self) -> None:
        self._operations: Dict[str, DeploymentOperation] = {}
        self._lock = threading.Lock()

    def save(self, operation: DeploymentOperation) -> None:
        with self._lock:
            self._operations[operation.organization_id] = _fresh_copy(operation)

    def latest(self, organization_id: str) -> Optional[DeploymentOperation]:
        with self._lock:
            operation = self._operations.get(organization_id)
        return _fresh_copy(operation) if operation is not None else None


def _to_item(operation: DeploymentOperation) -> Dict[str, Any]:
    return {
        "organizationId": {"S": operation.organization_id},
        "operationId": {"S": operation.operation_id},
        "stackSetName": {"S": operation.stack_set_name},
        "region": {"S": operation.region},
        "roleName": {"S": operation.role_name},
        "externalId": {"S": operation.external_id},
        "permissionModel": {"S": operation.permission_model.value},
        "targetAccountIds": {"SS": sorted(operation.target_account_ids)},
        "submittedAt": {"S": operation.submitted_at.isoformat()},
    }


def _from_item(item: Mapping[str, Any]) -> DeploymentOperation:
    return DeploymentOperation(
        operation_id=item["operationId"]["S"],
        organization_id=item["organizationId"]["S"],
        stack_set_name=item["stackSetName"]["S"],
        target_account_ids=frozenset(item["targetAccountIds"]["SS"]),
        submitted_at=datetime.fromisoformat(item["submittedAt"]["S"]),
        region=item["region"]["S"],
        role_name=item["roleName"]["S"],
        external_id=item["externalId"]["S"],
        permission_model=PermissionModel(item["permissionModel"]["S"]),
    )


class DynamoDBDeploymentStore(DeploymentStore):
    """Deployment records in a DynamoDB table with partition key organizationId."""

    def __init__(self, table_name: str, session: Optional[Session] = None, region: Optional[str] = None) -> None:
        if session is None:
            session = Session()
        self.table_name = table_name
        self.client: DynamoDBClient = session.client("dynamodb", region_name=region)

    def save(self, operation: DeploymentOperation) -> None:
        self.client.put_item(TableName=self.table_name, Item=_to_item(operation))
        logger.debug(f"Recorded operation {operation.operation_id} for {operation.organization_id}")

    def latest(self, organization_id: str) -> Optional[DeploymentOperation]:
        response = self.client.get_item(
            TableName=self.table_name,
            Key={"organizationId": {"S": organization_id}},
            ConsistentRead=True,
        )
        item = response.get("Item")
        return _from_item(item) if item else None
