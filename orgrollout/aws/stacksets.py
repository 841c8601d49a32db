"""
AWS CloudFormation StackSets integration.

This module wraps the CloudFormation and Organizations calls the
coordinator and reconciler need: permission model detection, stack set
creation, stack instance creation and per-account status listing.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from boto3.session import Session
from botocore.exceptions import ClientError
from mypy_boto3_cloudformation.client import CloudFormationClient
from mypy_boto3_organizations.client import OrganizationsClient

from ..constants import STACKSET_CAPABILITIES, STACKSETS_SERVICE_PRINCIPAL, instance_status_to_account_state
from ..enums import AccountState, ErrorCategory, PermissionModel
from ..errors import DeploymentError, classify_message
from ..types import AccountDeploymentState, RoleTemplateRef
from .helpers import paginated_items

logger = logging.getLogger(__name__)

STACK_SET_NOT_FOUND_ERROR_CODE = "StackSetNotFoundException"


def is_trusted_access_enabled(org_client: OrganizationsClient) -> bool:
    """
    Check whether CloudFormation StackSets trusted access is enabled.

    Args:
        org_client: AWS Organizations client in the management account

    Returns:
        True if the StackSets service principal is enabled

    Raises:
        ClientError: If the Organizations API call fails
    """
    services = paginated_items(
        org_client,  # type: ignore[arg-type]
        "list_aws_service_access_for_organization",
        "EnabledServicePrincipals",
    )
    for service in services:
        if service.get("ServicePrincipal") == STACKSETS_SERVICE_PRINCIPAL:
            return True
    return False


def determine_permission_model(session: Session) -> PermissionModel:
    """
    Choose SERVICE_MANAGED when trusted access is enabled, SELF_MANAGED otherwise.

    A failed trusted access check falls back to SELF_MANAGED.
    """
    org_client: OrganizationsClient = session.client("organizations")
    try:
        enabled = is_trusted_access_enabled(org_client)
    except ClientError as e:
        logger.warning(f"Could not check StackSets trusted access, defaulting to SELF_MANAGED: {e}")
        return PermissionModel.SELF_MANAGED
    logger.info(f"CloudFormation StackSets trusted access enabled: {enabled}")
    return PermissionModel.SERVICE_MANAGED if enabled else PermissionModel.SELF_MANAGED


def describe_permission_model(cfn_client: CloudFormationClient, stack_set_name: str) -> Optional[PermissionModel]:
    """
    Return the permission model of an existing stack set, or None if it does not exist.

    Raises:
        ClientError: For any error other than StackSetNotFoundException
    """
    try:
        response = cfn_client.describe_stack_set(StackSetName=stack_set_name)
    except ClientError as e:
        if e.response.get('Error', {}).get('Code') == STACK_SET_NOT_FOUND_ERROR_CODE:
            return None
        raise
    model = response["StackSet"].get("PermissionModel", PermissionModel.SELF_MANAGED.value)
    return PermissionModel(model)


def ensure_stack_set(
    cfn_client: CloudFormationClient,
    template: RoleTemplateRef,
    permission_model: PermissionModel,
    external_id: str,
    trusted_account_id: str,
    auto_deployment: bool = False
) -> None:
    """
    Create the stack set unless it already exists with the same permission model.

    Args:
        cfn_client: CloudFormation client in the management account
        template: Role template reference
        permission_model: Permission model for a newly created stack set
        external_id: External ID baked into the role trust policy
        trusted_account_id: Account allowed to assume the deployed role
        auto_deployment: Deploy automatically to accounts added to target units later
            (SERVICE_MANAGED only)

    Raises:
        DeploymentError: ALREADY_EXISTS if the existing stack set uses another permission model
        ClientError: If a CloudFormation call fails
    """
    existing_model = describe_permission_model(cfn_client, template.stack_set_name)
    if existing_model is not None:
        if existing_model != permission_model:
            raise DeploymentError(
                ErrorCategory.ALREADY_EXISTS,
                detail=(
                    f"StackSet {template.stack_set_name} uses {existing_model.value} permissions "
                    f"but {permission_model.value} is required"
                ),
                suggestion=(
                    f"Delete the existing StackSet '{template.stack_set_name}' first, "
                    f"then redeploy with {permission_model.value} permissions."
                ),
            )
        logger.info(f"Reusing existing StackSet {template.stack_set_name} ({existing_model.value})")
        return

    kwargs: Dict[str, Any] = {
        "StackSetName": template.stack_set_name,
        "Description": "Organization-wide read-only analysis role",
        "Capabilities": STACKSET_CAPABILITIES,
        "Parameters": [
            {"ParameterKey": "ExternalId", "ParameterValue": external_id},
            {"ParameterKey": "TrustedAccountId", "ParameterValue": trusted_account_id},
        ],
        "PermissionModel": permission_model.value,
    }
    if template.template_url:
        kwargs["TemplateURL"] = template.template_url
    elif template.template_body:
        kwargs["TemplateBody"] = template.template_body
    else:
        raise ValueError(f"Role template for {template.stack_set_name} has neither a URL nor a body")
    if permission_model == PermissionModel.SERVICE_MANAGED:
        kwargs["AutoDeployment"] = {
            "Enabled": auto_deployment,
            "RetainStacksOnAccountRemoval": False,
        }

    response = cfn_client.create_stack_set(**kwargs)
    logger.info(f"Created StackSet {template.stack_set_name}: {response.get('StackSetId')}")


def create_stack_instances(
    cfn_client: CloudFormationClient,
    stack_set_name: str,
    region: str,
    operation_id: str,
    permission_model: PermissionModel,
    account_ids: Sequence[str],
    unit_ids: Sequence[str] = ()
) -> str:
    """
    Start one stack instance operation.

    SERVICE_MANAGED stack sets are targeted by unit, intersected with the
    account list so only planned accounts are touched.

    Args:
        cfn_client: CloudFormation client in the management account
        stack_set_name: Stack set name
        region: Region to create instances in
        operation_id: Client-generated operation ID (idempotency token)
        permission_model: Permission model of the stack set
        account_ids: Target accounts
        unit_ids: Target units (SERVICE_MANAGED only)

    Returns:
        Operation ID reported by CloudFormation

    Raises:
        ClientError: If the CloudFormation call fails
    """
    if permission_model == PermissionModel.SERVICE_MANAGED:
        response = cfn_client.create_stack_instances(
            StackSetName=stack_set_name,
            DeploymentTargets={
                "OrganizationalUnitIds": list(unit_ids),
                "Accounts": list(account_ids),
                "AccountFilterType": "INTERSECTION",
            },
            Regions=[region],
            OperationId=operation_id,
        )
    else:
        response = cfn_client.create_stack_instances(
            StackSetName=stack_set_name,
            Accounts=list(account_ids),
            Regions=[region],
            OperationId=operation_id,
        )
    return response.get("OperationId", operation_id)


def _summary_to_state(summary: Mapping[str, Any]) -> AccountDeploymentState:
    detailed = summary.get("StackInstanceStatus", {}).get("DetailedStatus")
    status = detailed or summary.get("Status", "")
    state = instance_status_to_account_state(status)
    status_reason = summary.get("StatusReason")
    if state != AccountState.FAILED:
        return AccountDeploymentState(state=state, status_reason=status_reason)
    return AccountDeploymentState(
        state=state,
        reason=classify_message(status_reason or ""),
        status_reason=status_reason,
    )


def list_account_states(
    cfn_client: CloudFormationClient,
    stack_set_name: str,
    region: str
) -> Dict[str, AccountDeploymentState]:
    """
    Fetch the full per-account status of a stack set in one region.

    Args:
        cfn_client: CloudFormation client in the management account
        stack_set_name: Stack set name
        region: Region whose instances are listed

    Returns:
        Mapping of account ID to its current deployment state

    Raises:
        ClientError: If the CloudFormation call fails
    """
    states: Dict[str, AccountDeploymentState] = {}
    for summary in paginated_items(
        cfn_client,  # type: ignore[arg-type]
        "list_stack_instances",
        "Summaries",
        StackSetName=stack_set_name,
        StackInstanceRegion=region,
    ):
        states[summary["Account"]] = _summary_to_state(summary)
    return states


class StackSetStatusSource:
    """Callable that returns the latest full per-account status of one stack set."""

    def __init__(self, cfn_client: CloudFormationClient, stack_set_name: str, region: str) -> None:
        self.cfn_client = cfn_client
        self.stack_set_name = stack_set_name
        self.region = region

    def __call__(self) -> Dict[str, AccountDeploymentState]:
        return list_account_states(self.cfn_client, self.stack_set_name, self.region)
