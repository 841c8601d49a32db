"""
Deployment submission.

The coordinator turns a DeploymentPlan into exactly one StackSet
operation. Provider failures are classified into DeploymentError
categories here; only THROTTLED is retried locally.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, TypeVar

from boto3.session import Session
from botocore.exceptions import ClientError
from mypy_boto3_cloudformation.client import CloudFormationClient

from .aws.stacksets import create_stack_instances, determine_permission_model, ensure_stack_set
from .config import OrchestratorConfig
from .constants import ROOT_ACCOUNTS_SUGGESTION
from .enums import DeploymentMode, ErrorCategory, PermissionModel
from .errors import DeploymentError, EmptyPlanError, classify_client_error
from .types import (
    DeploymentOperation,
    DeploymentPlan,
    ExcludedAccount,
    OrganizationSnapshot,
    RoleTemplateRef,
    SubmissionResult,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

ENTIRE_ORGANIZATION_MESSAGE = "Organization-wide deployment initiated. Roles will be created in all targeted accounts."
SPECIFIC_UNITS_MESSAGE = "StackSet deployment initiated. Roles will be created in the selected organizational units."


@dataclass
class OperationTargets:
    """Accounts and units one operation addresses under a permission model."""
    account_ids: List[str]
    unit_ids: List[str]
    excluded_root_account_ids: List[str]


def operation_targets(plan: DeploymentPlan, permission_model: PermissionModel) -> OperationTargets:
    """
    Narrow a plan to what one StackSet operation can address.

    SERVICE_MANAGED stack sets are targeted through units and cannot reach
    accounts placed directly under the root, so those are excluded.

    Args:
        plan: Deployment plan
        permission_model: Permission model of the stack set

    Returns:
        OperationTargets with sorted account IDs
    """
    if permission_model == PermissionModel.SELF_MANAGED:
        return OperationTargets(
            account_ids=plan.sorted_targets(),
            unit_ids=[],
            excluded_root_account_ids=[],
        )
    root_level = sorted(plan.root_level_account_ids)
    accounts = [account_id for account_id in plan.sorted_targets() if account_id not in plan.root_level_account_ids]
    units = [unit_id for unit_id in plan.target_unit_ids if unit_id != plan.root_unit_id]
    return OperationTargets(account_ids=accounts, unit_ids=units, excluded_root_account_ids=root_level)


class DeploymentCoordinator:
    """
    Issues one StackSet operation per submitted plan.

    Args:
        session: boto3 Session in the management account
        config: Orchestrator configuration
        sleep: Sleep function used between throttled attempts
    """

    def __init__(
        self,
        session: Session,
        config: OrchestratorConfig,
        sleep: Callable[[float], None] = time.sleep
    ) -> None:
        self.session = session
        self.config = config
        self.sleep = sleep
        self.cfn_client: CloudFormationClient = session.client("cloudformation", region_name=config.region)

    def _with_throttle_retry(self, description: str, call: Callable[[], T], target_account_ids: List[str]) -> T:
        """
        Run call, retrying with exponential backoff while AWS throttles it.

        Raises:
            DeploymentError: Classified failure, including THROTTLED once attempts are exhausted
        """
        retry = self.config.throttle_retry
        delay = retry.base_delay_seconds
        for attempt in range(1, retry.max_attempts + 1):
            try:
                return call()
            except ClientError as e:
                error = classify_client_error(e, target_account_ids)
                if error.category != ErrorCategory.THROTTLED or attempt == retry.max_attempts:
                    raise error from e
                logger.warning(
                    f"{description} throttled (attempt {attempt}/{retry.max_attempts}), retrying in {delay}s"
                )
                self.sleep(delay)
                delay *= retry.backoff_multiplier
        raise DeploymentError(ErrorCategory.THROTTLED, detail=f"{description} was not attempted")

    def _build_operation(
        self,
        plan: DeploymentPlan,
        template: RoleTemplateRef,
        external_id: str,
        operation_id: str,
        permission_model: PermissionModel,
        account_ids: List[str]
    ) -> DeploymentOperation:
        return DeploymentOperation(
            operation_id=operation_id,
            organization_id=plan.organization_id,
            stack_set_name=template.stack_set_name,
            target_account_ids=frozenset(account_ids),
            submitted_at=datetime.now(timezone.utc),
            region=self.config.region,
            role_name=template.role_name,
            external_id=external_id,
            permission_model=permission_model,
        )

    def submit(
        self,
        plan: DeploymentPlan,
        template: RoleTemplateRef,
        external_id: str,
        snapshot: Optional[OrganizationSnapshot] = None
    ) -> SubmissionResult:
        """
        Submit one deployment operation for a plan.

        Not idempotent at the provider: every call starts a new operation.

        Args:
            plan: Deployment plan from the target planner
            template: Role template reference
            external_id: External ID baked into the deployed role's trust policy
            snapshot: Snapshot the plan came from, used to name excluded accounts

        Returns:
            SubmissionResult with the new DeploymentOperation

        Raises:
            EmptyPlanError: If the permission model leaves no addressable account
            DeploymentError: Classified provider failure
        """
        permission_model = determine_permission_model(self.session)
        targets = operation_targets(plan, permission_model)
        if not targets.account_ids:
            raise EmptyPlanError(
                f"SERVICE_MANAGED StackSets require organizational units. Found "
                f"{len(targets.excluded_root_account_ids)} accounts directly under root that cannot be targeted."
            )

        self._with_throttle_retry(
            f"Creating StackSet {template.stack_set_name}",
            lambda: ensure_stack_set(
                self.cfn_client,
                template,
                permission_model,
                external_id,
                self.config.trusted_account_id,
                auto_deployment=plan.mode == DeploymentMode.ENTIRE_ORGANIZATION,
            ),
            targets.account_ids,
        )

        operation_id = str(uuid.uuid4())
        logger.info(
            f"Deploying {template.stack_set_name} to {len(targets.account_ids)} accounts "
            f"({permission_model.value}) as operation {operation_id}"
        )
        # The same OperationId is reused across retries so a retried call cannot start a second operation
        self._with_throttle_retry(
            f"Creating stack instances for {template.stack_set_name}",
            lambda: create_stack_instances(
                self.cfn_client,
                template.stack_set_name,
                self.config.region,
                operation_id,
                permission_model,
                targets.account_ids,
                targets.unit_ids,
            ),
            targets.account_ids,
        )

        operation = self._build_operation(
            plan, template, external_id, operation_id, permission_model, targets.account_ids
        )
        message = (
            ENTIRE_ORGANIZATION_MESSAGE if plan.mode == DeploymentMode.ENTIRE_ORGANIZATION
            else SPECIFIC_UNITS_MESSAGE
        )
        result = SubmissionResult(operation=operation, message=message)

        if targets.excluded_root_account_ids:
            logger.warning(
                f"{len(targets.excluded_root_account_ids)} accounts are directly under root "
                f"and will NOT be included in the deployment"
            )
            result.warning = (
                f"{len(targets.excluded_root_account_ids)} accounts directly under root "
                f"were NOT included in deployment"
            )
            result.excluded_accounts = [
                ExcludedAccount(id=account_id, name=_account_name(snapshot, account_id))
                for account_id in targets.excluded_root_account_ids
            ]
            result.suggestion = ROOT_ACCOUNTS_SUGGESTION

        return result

    def resume(
        self,
        plan: DeploymentPlan,
        template: RoleTemplateRef,
        external_id: str,
        operation_id: str
    ) -> DeploymentOperation:
        """
        Rebuild the record of an earlier submission without contacting CloudFormation's write APIs.

        Because plan() is deterministic, re-planning with the original inputs
        yields the original target set.

        Args:
            plan: Plan recomputed from the original inputs
            template: Role template reference used at submission
            external_id: External ID used at submission
            operation_id: Operation ID returned at submission

        Returns:
            DeploymentOperation in the SUBMITTED state
        """
        permission_model = determine_permission_model(self.session)
        targets = operation_targets(plan, permission_model)
        return self._build_operation(
            plan, template, external_id, operation_id, permission_model, targets.account_ids
        )


def _account_name(snapshot: Optional[OrganizationSnapshot], account_id: str) -> str:
    if snapshot is None:
        return account_id
    for account in snapshot.all_accounts():
        if account.id == account_id:
            return account.display_name
    return account_id
