"""
Constants module for AWS names, status mappings and remediation hints.

This module contains the string constants used throughout the orgrollout
codebase so that provider-specific names live in one place.
"""

from typing import Dict, FrozenSet

from .enums import AccountLifecycleStatus, AccountState, ErrorCategory

# Role created in every target account by the role template
DEFAULT_ROLE_NAME = "OrgRolloutReadOnlyRole"
DEFAULT_STACK_SET_NAME_PREFIX = "orgrollout-org"
DEFAULT_EXTERNAL_ID_PREFIX = "orgrollout"

# Roles required by SELF_MANAGED StackSets
STACKSET_ADMINISTRATION_ROLE = "AWSCloudFormationStackSetAdministrationRole"
STACKSET_EXECUTION_ROLE = "AWSCloudFormationStackSetExecutionRole"

# Service principal that is enabled when StackSets trusted access is on
STACKSETS_SERVICE_PRINCIPAL = "member.org.stacksets.cloudformation.amazonaws.com"

STACKSET_CAPABILITIES = ["CAPABILITY_NAMED_IAM"]

# Session names used for role assumption
DETECTION_SESSION_NAME = "orgrollout-org-detection"
DEPLOYMENT_SESSION_NAME = "orgrollout-stackset-deployment"
STATUS_SESSION_NAME = "orgrollout-stackset-status"
REGISTRATION_VALIDATION_SESSION_NAME = "orgrollout-registration-validation"

# Pattern to extract 12-digit account IDs from provider error messages
ACCOUNT_ID_PATTERN = r'\b(\d{12})\b'

ROLE_ARN_FORMAT = "arn:aws:iam::{account_id}:role/{role_name}"

# Organizations account status -> lifecycle status
ACCOUNT_STATUS_MAP: Dict[str, AccountLifecycleStatus] = {
    "ACTIVE": AccountLifecycleStatus.ACTIVE,
    "SUSPENDED": AccountLifecycleStatus.SUSPENDED,
    "PENDING_CLOSURE": AccountLifecycleStatus.PENDING_CLOSURE,
}

# Stack instance status (detailed status preferred) -> account state
SUCCEEDED_INSTANCE_STATUSES: FrozenSet[str] = frozenset({"SUCCEEDED", "CURRENT"})
FAILED_INSTANCE_STATUSES: FrozenSet[str] = frozenset({
    "FAILED",
    "CANCELLED",
    "INOPERABLE",
    "SKIPPED_SUSPENDED_ACCOUNT",
})


def instance_status_to_account_state(status: str) -> AccountState:
    """
    Map a stack instance status to an account deployment state.

    Args:
        status: Status or detailed status string from CloudFormation

    Returns:
        SUCCEEDED, FAILED, or PENDING for anything not yet terminal
    """
    if status in SUCCEEDED_INSTANCE_STATUSES:
        return AccountState.SUCCEEDED
    if status in FAILED_INSTANCE_STATUSES:
        return AccountState.FAILED
    return AccountState.PENDING


# Botocore error codes grouped by category
THROTTLING_ERROR_CODES: FrozenSet[str] = frozenset({
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
})
ACCESS_DENIED_ERROR_CODES: FrozenSet[str] = frozenset({
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
})
ALREADY_EXISTS_ERROR_CODES: FrozenSet[str] = frozenset({
    "AlreadyExistsException",
    "NameAlreadyExistsException",
    "OperationIdAlreadyExistsException",
    "OperationInProgressException",
})

REMEDIATION_HINTS: Dict[ErrorCategory, str] = {
    ErrorCategory.ADMINISTRATION_ROLE_MISSING: (
        "Enable trusted access for CloudFormation StackSets in AWS Organizations, "
        f"or create the {STACKSET_ADMINISTRATION_ROLE} in the management account."
    ),
    ErrorCategory.EXECUTION_ROLE_MISSING: (
        "Enable trusted access for CloudFormation StackSets in AWS Organizations, "
        f"or deploy the {STACKSET_EXECUTION_ROLE} to each listed member account."
    ),
    ErrorCategory.ALREADY_EXISTS: (
        "A StackSet or operation for this organization already exists. "
        "Check its status, or delete the existing StackSet and redeploy."
    ),
    ErrorCategory.ACCESS_DENIED: (
        "Ensure the management role has the required CloudFormation and Organizations permissions."
    ),
    ErrorCategory.THROTTLED: "AWS throttled the request. Wait a few minutes and retry.",
    ErrorCategory.UNKNOWN: "Inspect the error detail and the StackSet operation in the CloudFormation console.",
}

ROOT_ACCOUNTS_SUGGESTION = (
    "Move these accounts into organizational units to include them in future deployments"
)
