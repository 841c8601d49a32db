"""
Shared data types and models for the orgrollout application.

This module contains all the data classes used across the application
to avoid circular import issues and provide a single source of truth
for data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple

from .enums import (
    AccountLifecycleStatus,
    AccountState,
    DeploymentMode,
    ErrorCategory,
    OperationState,
    PermissionModel,
    RegistrationEventType,
    RegistrationType,
)


@dataclass(frozen=True)
class AccountRef:
    """A member account as reported by the Organizations API."""
    id: str
    display_name: str
    email: str
    lifecycle_status: AccountLifecycleStatus = AccountLifecycleStatus.ACTIVE


@dataclass(frozen=True)
class OrganizationalUnit:
    """Information about an Organizational Unit (the root is also a unit)."""
    id: str
    name: str
    parent_id: Optional[str]
    accounts: Tuple[AccountRef, ...] = ()
    child_unit_ids: Tuple[str, ...] = ()

    @property
    def is_root(self) -> bool:
        return self.name.lower() == "root"


@dataclass(frozen=True)
class OrganizationSnapshot:
    """
    Immutable result of one organization detection call.

    Units are stored in pre-order: the root first, then each subtree in the
    order the remote API listed it.
    """
    organization_id: str
    management_account_id: str
    units: Tuple[OrganizationalUnit, ...]

    def __post_init__(self) -> None:
        seen_units = set()
        seen_accounts: Dict[str, str] = {}
        for unit in self.units:
            if unit.id in seen_units:
                raise ValueError(f"Duplicate organizational unit id in snapshot: {unit.id}")
            seen_units.add(unit.id)
            if unit.is_root and unit.parent_id is not None:
                raise ValueError(f"Root unit {unit.id} must not have a parent (found {unit.parent_id})")
            for account in unit.accounts:
                if account.id in seen_accounts:
                    raise ValueError(
                        f"Account {account.id} appears in both {seen_accounts[account.id]} and {unit.id}"
                    )
                seen_accounts[account.id] = unit.id

    @property
    def root_unit(self) -> OrganizationalUnit:
        for unit in self.units:
            if unit.parent_id is None:
                return unit
        raise ValueError(f"Organization {self.organization_id} snapshot has no root unit")

    def get_unit(self, unit_id: str) -> Optional[OrganizationalUnit]:
        for unit in self.units:
            if unit.id == unit_id:
                return unit
        return None

    def all_accounts(self) -> Iterator[AccountRef]:
        for unit in self.units:
            yield from unit.accounts

    def unit_of_account(self, account_id: str) -> Optional[OrganizationalUnit]:
        for unit in self.units:
            if any(account.id == account_id for account in unit.accounts):
                return unit
        return None

    def descendant_unit_ids(self, unit_id: str) -> List[str]:
        """
        Return unit_id followed by every unit beneath it, in snapshot order.

        Args:
            unit_id: Unit to start from

        Returns:
            List of unit IDs (empty if unit_id is unknown)
        """
        if self.get_unit(unit_id) is None:
            return []
        selected = {unit_id}
        # Pre-order guarantees parents are visited before their children
        for unit in self.units:
            if unit.parent_id in selected:
                selected.add(unit.id)
        return [unit.id for unit in self.units if unit.id in selected]


@dataclass(frozen=True)
class DeploymentPlan:
    """Concrete deployment targets derived from a snapshot. Never persisted."""
    organization_id: str
    management_account_id: str
    mode: DeploymentMode
    selected_unit_ids: Tuple[str, ...]
    resolved_target_account_ids: FrozenSet[str]
    target_unit_ids: Tuple[str, ...] = ()
    root_unit_id: Optional[str] = None
    root_level_account_ids: FrozenSet[str] = frozenset()
    skipped_inactive_account_ids: FrozenSet[str] = frozenset()

    def sorted_targets(self) -> List[str]:
        return sorted(self.resolved_target_account_ids)


@dataclass(frozen=True)
class RoleTemplateRef:
    """
    Reference to the role template deployed to every target account.

    The template content is opaque; only one of template_url or
    template_body needs to be set.
    """
    stack_set_name: str
    role_name: str
    template_url: Optional[str] = None
    template_body: Optional[str] = None


@dataclass(frozen=True)
class AccountDeploymentState:
    """Deployment outcome for one account at one poll."""
    state: AccountState
    reason: Optional[ErrorCategory] = None
    status_reason: Optional[str] = None


@dataclass
class DeploymentOperation:
    """
    Mutable record of one submitted deployment.

    Owned by a single StatusReconciler, which replaces the aggregate fields
    wholesale on every poll.
    """
    operation_id: str
    organization_id: str
    stack_set_name: str
    target_account_ids: FrozenSet[str]
    submitted_at: datetime
    region: str
    role_name: str
    external_id: str
    permission_model: PermissionModel = PermissionModel.SELF_MANAGED
    state: OperationState = OperationState.SUBMITTED
    per_account_status: Mapping[str, AccountDeploymentState] = field(default_factory=dict)
    poll_count: int = 0
    unchanged_polls: int = 0
    last_polled_at: Optional[datetime] = None
    synced: bool = False


@dataclass(frozen=True)
class ExcludedAccount:
    """An account the coordinator left out of a submitted operation."""
    id: str
    name: str


@dataclass
class SubmissionResult:
    """Outcome of a successful deployment submission."""
    operation: DeploymentOperation
    message: str
    warning: Optional[str] = None
    excluded_accounts: List[ExcludedAccount] = field(default_factory=list)
    suggestion: Optional[str] = None


@dataclass(frozen=True)
class AccountStatusEntry:
    """Per-account line of a deployment status summary."""
    account_id: str
    status: AccountState
    reason: Optional[ErrorCategory] = None
    status_reason: Optional[str] = None


@dataclass
class DeploymentStatusSummary:
    """Aggregate view of a deployment operation after a poll."""
    organization_id: str
    operation_id: str
    state: OperationState
    successful_deployments: int
    failed_deployments: int
    in_progress_deployments: int
    total_target_accounts: int
    accounts: List[AccountStatusEntry]

    @property
    def failures(self) -> List[AccountStatusEntry]:
        return [entry for entry in self.accounts if entry.status == AccountState.FAILED]


@dataclass(frozen=True)
class RegisteredAccount:
    """
    Durable catalog record for an account whose analysis role is usable.

    provenance lists every registration type that has applied to the
    account, oldest first. registration_type is always provenance[0].
    """
    account_id: str
    role_arn: str
    external_id: str
    region: str
    registration_type: RegistrationType
    organization_id: Optional[str] = None
    display_name: Optional[str] = None
    provenance: Tuple[RegistrationType, ...] = ()

    def __post_init__(self) -> None:
        if not self.provenance:
            object.__setattr__(self, "provenance", (self.registration_type,))


@dataclass
class SyncResult:
    """Result of syncing converged accounts into the catalog."""
    organization_id: str
    synced_accounts: int
    accounts: List[RegisteredAccount] = field(default_factory=list)


@dataclass(frozen=True)
class RegistrationEvent:
    """Announcement sent by an account that set up its role on its own."""
    account_id: str
    role_arn: str
    external_id: str
    region: str
    organization_id: Optional[str] = None
    account_name: Optional[str] = None
    is_management_account: bool = False
    event_type: RegistrationEventType = RegistrationEventType.INITIAL


@dataclass
class DeploymentResponse:
    """What a caller is told after submitting an organization deployment."""
    operation_id: str
    message: str
    stack_set_name: str
    target_accounts: int
    warning: Optional[str] = None
    excluded_accounts: List[ExcludedAccount] = field(default_factory=list)
    suggestion: Optional[str] = None

    @classmethod
    def from_submission(cls, result: SubmissionResult) -> "DeploymentResponse":
        return cls(
            operation_id=result.operation.operation_id,
            message=result.message,
            stack_set_name=result.operation.stack_set_name,
            target_accounts=len(result.operation.target_account_ids),
            warning=result.warning,
            excluded_accounts=list(result.excluded_accounts),
            suggestion=result.suggestion,
        )
