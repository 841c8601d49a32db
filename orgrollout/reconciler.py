"""
Deployment status reconciliation.

reconcile() is a pure state transition: it recomputes the whole aggregate
from the latest full remote status, so late or skipped polls never leave
it inconsistent. StatusReconciler owns one DeploymentOperation, applies
each transition atomically and triggers the catalog sync on convergence.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Mapping

from .catalog import AccountCatalog
from .config import DEFAULT_STALL_THRESHOLD
from .constants import ROLE_ARN_FORMAT
from .enums import AccountState, OperationState, RegistrationType
from .output import OutputHandler
from .types import (
    AccountDeploymentState,
    AccountStatusEntry,
    DeploymentOperation,
    DeploymentStatusSummary,
    RegisteredAccount,
    SyncResult,
)

logger = logging.getLogger(__name__)

StatusSource = Callable[[], Mapping[str, AccountDeploymentState]]
"""Returns the latest full per-account status of an operation."""

PENDING = AccountDeploymentState(state=AccountState.PENDING)


@dataclass(frozen=True)
class AggregateState:
    """Everything reconcile() derives for an operation at one poll."""
    state: OperationState = OperationState.SUBMITTED
    per_account_status: Mapping[str, AccountDeploymentState] = field(default_factory=dict)
    poll_count: int = 0
    # Consecutive polls (including this one) with no per-account state change
    unchanged_polls: int = 0


def _same_states(
    previous: Mapping[str, AccountDeploymentState],
    current: Mapping[str, AccountDeploymentState]
) -> bool:
    return {k: v.state for k, v in previous.items()} == {k: v.state for k, v in current.items()}


def reconcile(
    previous: AggregateState,
    remote_status: Mapping[str, AccountDeploymentState],
    target_account_ids: FrozenSet[str],
    stall_threshold: int = DEFAULT_STALL_THRESHOLD
) -> AggregateState:
    """
    Compute the next aggregate state from the latest full remote status.

    Targets missing from remote_status are pending; non-target accounts in
    remote_status are ignored. Converged states are returned unchanged.

    Args:
        previous: Aggregate state after the previous poll
        remote_status: Latest full per-account status
        target_account_ids: Accounts the operation targets
        stall_threshold: Consecutive unchanged polls, with accounts still
            pending, after which the operation is STALLED

    Returns:
        New AggregateState
    """
    if previous.state.is_converged:
        return previous

    current: Dict[str, AccountDeploymentState] = {
        account_id: remote_status.get(account_id, PENDING)
        for account_id in sorted(target_account_ids)
    }
    states = [status.state for status in current.values()]

    if previous.poll_count > 0 and _same_states(previous.per_account_status, current):
        unchanged = previous.unchanged_polls + 1
    else:
        unchanged = 1

    if all(state == AccountState.SUCCEEDED for state in states):
        new_state = OperationState.CONVERGED_SUCCESS
    elif all(state != AccountState.PENDING for state in states):
        new_state = OperationState.CONVERGED_PARTIAL
    elif unchanged >= stall_threshold:
        new_state = OperationState.STALLED
    elif any(state != AccountState.PENDING for state in states):
        new_state = OperationState.IN_PROGRESS
    elif previous.state == OperationState.SUBMITTED:
        new_state = OperationState.SUBMITTED
    else:
        new_state = OperationState.IN_PROGRESS

    return AggregateState(
        state=new_state,
        per_account_status=current,
        poll_count=previous.poll_count + 1,
        unchanged_polls=unchanged,
    )


class StatusReconciler:
    """
    Single owner of one DeploymentOperation.

    poll() is serialised by a lock, so the operation is never observed
    half-updated even when polled from a background task and a caller at
    the same time.
    """

    def __init__(
        self,
        operation: DeploymentOperation,
        status_source: StatusSource,
        catalog: AccountCatalog,
        stall_threshold: int = DEFAULT_STALL_THRESHOLD
    ) -> None:
        if not operation.target_account_ids:
            raise ValueError(f"Operation {operation.operation_id} has no target accounts")
        self._operation = operation
        self.status_source = status_source
        self.catalog = catalog
        self.stall_threshold = stall_threshold
        self._lock = threading.RLock()

    @property
    def operation_id(self) -> str:
        return self._operation.operation_id

    @property
    def organization_id(self) -> str:
        return self._operation.organization_id

    @property
    def state(self) -> OperationState:
        with self._lock:
            return self._operation.state

    def _aggregate(self) -> AggregateState:
        return AggregateState(
            state=self._operation.state,
            per_account_status=self._operation.per_account_status,
            poll_count=self._operation.poll_count,
            unchanged_polls=self._operation.unchanged_polls,
        )

    def _apply(self, aggregate: AggregateState) -> None:
        operation = self._operation
        operation.state = aggregate.state
        operation.per_account_status = aggregate.per_account_status
        operation.poll_count = aggregate.poll_count
        operation.unchanged_polls = aggregate.unchanged_polls
        operation.last_polled_at = datetime.now(timezone.utc)

    def _succeeded_account_ids(self) -> List[str]:
        return sorted(
            account_id for account_id, status in self._operation.per_account_status.items()
            if status.state == AccountState.SUCCEEDED
        )

    def _needs_sync(self) -> bool:
        return (
            self._operation.state.is_converged
            and not self._operation.synced
            and bool(self._succeeded_account_ids())
        )

    def poll(self) -> DeploymentStatusSummary:
        """
        Fetch the full remote status once and advance the state machine.

        Converged operations are not fetched again. The first poll that
        observes convergence with at least one success syncs the catalog.

        Returns:
            Status summary after this poll

        Raises:
            ClientError: If fetching the remote status fails (nothing is mutated)
        """
        with self._lock:
            if not self._operation.state.is_converged:
                remote_status = self.status_source()
                previous_state = self._operation.state
                aggregate = reconcile(
                    self._aggregate(),
                    remote_status,
                    self._operation.target_account_ids,
                    self.stall_threshold,
                )
                self._apply(aggregate)
                if aggregate.state != previous_state:
                    logger.info(
                        f"Operation {self.operation_id}: {previous_state.value} -> {aggregate.state.value}"
                    )
                if aggregate.state == OperationState.STALLED:
                    logger.warning(
                        f"Operation {self.operation_id} has not changed for {aggregate.unchanged_polls} polls"
                    )

            if self._needs_sync():
                self.sync()
                self._operation.synced = True

            summary = self.summary()
        OutputHandler.poll_completed(summary)
        return summary

    def sync(self) -> SyncResult:
        """
        Upsert a RegisteredAccount for every succeeded target.

        Idempotent: the catalog upsert is keyed by account ID, so calling
        this again (for example after a restart) changes nothing.

        Returns:
            SyncResult listing the accounts applied
        """
        with self._lock:
            operation = self._operation
            accounts = [
                RegisteredAccount(
                    account_id=account_id,
                    role_arn=ROLE_ARN_FORMAT.format(account_id=account_id, role_name=operation.role_name),
                    external_id=operation.external_id,
                    region=operation.region,
                    registration_type=RegistrationType.ORGANIZATION_SYNC,
                    organization_id=operation.organization_id,
                )
                for account_id in self._succeeded_account_ids()
            ]
        created = sum(1 for account in accounts if self.catalog.upsert(account))
        logger.info(
            f"Synced {len(accounts)} accounts for organization {operation.organization_id} "
            f"({created} new)"
        )
        return SyncResult(
            organization_id=operation.organization_id,
            synced_accounts=len(accounts),
            accounts=accounts,
        )

    def summary(self) -> DeploymentStatusSummary:
        """Build the status summary of the latest applied poll."""
        with self._lock:
            operation = self._operation
            statuses = {
                account_id: operation.per_account_status.get(account_id, PENDING)
                for account_id in sorted(operation.target_account_ids)
            }
            state = operation.state
        entries = [
            AccountStatusEntry(
                account_id=account_id,
                status=status.state,
                reason=status.reason,
                status_reason=status.status_reason,
            )
            for account_id, status in statuses.items()
        ]
        return DeploymentStatusSummary(
            organization_id=operation.organization_id,
            operation_id=operation.operation_id,
            state=state,
            successful_deployments=sum(1 for e in entries if e.status == AccountState.SUCCEEDED),
            failed_deployments=sum(1 for e in entries if e.status == AccountState.FAILED),
            in_progress_deployments=sum(1 for e in entries if e.status == AccountState.PENDING),
            total_target_accounts=len(entries),
            accounts=entries,
        )
