"""
Enumerations for the orgrollout application.

This module contains all enum types used throughout the application
to replace magic strings and improve type safety.
"""

from enum import Enum


class AccountLifecycleStatus(str, Enum):
    """Lifecycle status of a member account as reported by Organizations."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING_CLOSURE = "pending_closure"


class DeploymentMode(str, Enum):
    """Which part of the organization a deployment targets."""
    ENTIRE_ORGANIZATION = "entire_organization"
    SPECIFIC_UNITS = "specific_units"


class PermissionModel(str, Enum):
    """StackSet permission models."""
    SERVICE_MANAGED = "SERVICE_MANAGED"
    SELF_MANAGED = "SELF_MANAGED"


class AccountState(str, Enum):
    """Deployment outcome for a single target account."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OperationState(str, Enum):
    """Aggregate state of a deployment operation."""
    SUBMITTED = "submitted"
    IN_PROGRESS = "in_progress"
    CONVERGED_SUCCESS = "converged_success"
    CONVERGED_PARTIAL = "converged_partial"
    STALLED = "stalled"

    @property
    def is_converged(self) -> bool:
        return self in (OperationState.CONVERGED_SUCCESS, OperationState.CONVERGED_PARTIAL)


class ErrorCategory(str, Enum):
    """Closed set of deployment failure categories."""
    ADMINISTRATION_ROLE_MISSING = "administration_role_missing"
    EXECUTION_ROLE_MISSING = "execution_role_missing"
    ALREADY_EXISTS = "already_exists"
    ACCESS_DENIED = "access_denied"
    THROTTLED = "throttled"
    UNKNOWN = "unknown"


class DetectionFailure(str, Enum):
    """Reasons organization detection can fail."""
    NOT_AN_ORGANIZATION_MANAGEMENT_ACCOUNT = "not_an_organization_management_account"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    REMOTE_UNAVAILABLE = "remote_unavailable"


class RegistrationType(str, Enum):
    """How an account came to be in the account catalog."""
    DIRECT = "direct"
    SELF_REGISTERED = "self_registered"
    ORGANIZATION_SYNC = "organization_sync"


class RegistrationEventType(str, Enum):
    """Kinds of announcements sent by self-registering accounts."""
    INITIAL = "initial"
    HEARTBEAT = "heartbeat"
