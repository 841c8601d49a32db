"""
External interfaces of the deployment orchestrator.

Every call takes an explicit OrganizationSession (or organization ID)
instead of relying on a "current organization". The only state held
across calls is the reconciler of the latest operation of each
organization; its submission record is also kept in a DeploymentStore so a
later process can resume tracking from the organization ID alone.
"""

import logging
import threading
from dataclasses import dataclass
from functools import partial
from typing import Dict, Iterable, Optional

from boto3.session import Session
from mypy_boto3_cloudformation.client import CloudFormationClient

from .aws.organization import detect_organization, detect_organization_for_role
from .aws.sessions import assume_role, can_assume_role
from .aws.stacksets import StackSetStatusSource
from .catalog import AccountCatalog, DynamoDBAccountCatalog, InMemoryAccountCatalog
from .config import OrchestratorConfig
from .constants import DEPLOYMENT_SESSION_NAME
from .coordinator import DeploymentCoordinator
from .deployments import DeploymentStore, DynamoDBDeploymentStore, InMemoryDeploymentStore
from .enums import DeploymentMode
from .errors import PlanValidationError
from .planner import plan
from .polling import PollingTask
from .reconciler import StatusReconciler
from .self_registration import RegistrationWatch, SelfRegistrationMonitor, generate_external_id
from .types import (
    DeploymentOperation,
    DeploymentResponse,
    DeploymentStatusSummary,
    OrganizationSnapshot,
    RegistrationEvent,
    RoleTemplateRef,
    SyncResult,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrganizationSession:
    """Everything needed to act on one organization's management account."""
    organization_id: str
    management_account_id: str
    region: str
    role_arn: Optional[str] = None
    external_id: Optional[str] = None
    snapshot: Optional[OrganizationSnapshot] = None

    @classmethod
    def from_snapshot(
        cls,
        snapshot: OrganizationSnapshot,
        region: str,
        role_arn: Optional[str] = None,
        external_id: Optional[str] = None
    ) -> "OrganizationSession":
        return cls(
            organization_id=snapshot.organization_id,
            management_account_id=snapshot.management_account_id,
            region=region,
            role_arn=role_arn,
            external_id=external_id,
            snapshot=snapshot,
        )


class OrganizationOrchestrator:
    """
    Detect, plan, deploy, track and sync organization-wide role deployments.

    Args:
        config: Orchestrator configuration
        base_session: Session used to reach the management account (defaults to boto3.Session())
        catalog: Account catalog (defaults to DynamoDB when accounts_table is set, else in-memory)
        deployments: Deployment records (defaults to DynamoDB when deployments_table is set, else in-memory)
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        base_session: Optional[Session] = None,
        catalog: Optional[AccountCatalog] = None,
        deployments: Optional[DeploymentStore] = None
    ) -> None:
        self.config = config
        self.base_session = base_session if base_session is not None else Session()
        if catalog is None:
            if config.accounts_table:
                catalog = DynamoDBAccountCatalog(config.accounts_table, self.base_session, config.region)
            else:
                catalog = InMemoryAccountCatalog()
        self.catalog = catalog
        if deployments is None:
            if config.deployments_table:
                deployments = DynamoDBDeploymentStore(config.deployments_table, self.base_session, config.region)
            else:
                deployments = InMemoryDeploymentStore()
        self.deployments = deployments
        self.registrations = SelfRegistrationMonitor(
            catalog,
            role_validator=partial(can_assume_role, base_session=self.base_session),
        )
        self._lock = threading.Lock()
        self._reconcilers: Dict[str, StatusReconciler] = {}
        self._latest_operation: Dict[str, str] = {}

    def detect_organization(
        self,
        role_arn: Optional[str] = None,
        region: Optional[str] = None,
        external_id: Optional[str] = None
    ) -> OrganizationSnapshot:
        """
        Detect the organization behind a management account role.

        Without a role ARN (argument or config) the base session is assumed
        to already be in the management account.

        Raises:
            DetectionError: If the organization cannot be detected
        """
        role_arn = role_arn or self.config.management_role_arn
        region = region or self.config.region
        external_id = external_id or self.config.external_id
        if role_arn is None:
            return detect_organization(self.base_session)
        return detect_organization_for_role(role_arn, region, external_id, self.base_session)

    def open_session(
        self,
        role_arn: Optional[str] = None,
        region: Optional[str] = None,
        external_id: Optional[str] = None
    ) -> OrganizationSession:
        """Detect the organization and wrap the result in an OrganizationSession."""
        snapshot = self.detect_organization(role_arn, region, external_id)
        return OrganizationSession.from_snapshot(
            snapshot,
            region=region or self.config.region,
            role_arn=role_arn or self.config.management_role_arn,
            external_id=external_id or self.config.external_id,
        )

    def _snapshot(self, session: OrganizationSession) -> OrganizationSnapshot:
        snapshot = session.snapshot
        if snapshot is None:
            snapshot = self.detect_organization(session.role_arn, session.region, session.external_id)
        if snapshot.organization_id != session.organization_id:
            raise PlanValidationError(
                f"Role {session.role_arn} belongs to organization {snapshot.organization_id}, "
                f"not {session.organization_id}"
            )
        return snapshot

    def _management_session(self, role_arn: Optional[str], external_id: Optional[str], region: str) -> Session:
        if role_arn is None:
            return self.base_session
        return assume_role(
            role_arn,
            DEPLOYMENT_SESSION_NAME,
            self.base_session,
            external_id=external_id,
            region=region
        )

    def _role_external_id(self, session: OrganizationSession) -> str:
        external_id = session.external_id or self.config.external_id
        if not external_id:
            raise ValueError("An external ID is required to deploy the analysis role")
        return external_id

    def role_template(self, organization_id: str) -> RoleTemplateRef:
        return RoleTemplateRef(
            stack_set_name=self.config.stack_set_name(organization_id),
            role_name=self.config.role_name,
            template_url=self.config.template_url,
            template_body=self.config.template_body,
        )

    def _reconciler(self, operation: DeploymentOperation, cfn_client: CloudFormationClient) -> StatusReconciler:
        return StatusReconciler(
            operation,
            StackSetStatusSource(cfn_client, operation.stack_set_name, operation.region),
            self.catalog,
            stall_threshold=self.config.polling.stall_threshold,
        )

    def _register(self, reconciler: StatusReconciler) -> None:
        with self._lock:
            superseded = self._latest_operation.get(reconciler.organization_id)
            if superseded is not None and superseded != reconciler.operation_id:
                self._reconcilers.pop(superseded, None)
                logger.debug(f"Operation {superseded} superseded by {reconciler.operation_id}")
            self._reconcilers[reconciler.operation_id] = reconciler
            self._latest_operation[reconciler.organization_id] = reconciler.operation_id

    def _track(self, operation: DeploymentOperation, coordinator: DeploymentCoordinator) -> StatusReconciler:
        reconciler = self._reconciler(operation, coordinator.cfn_client)
        self.deployments.save(operation)
        self._register(reconciler)
        return reconciler

    def _restore(self, organization_id: str) -> StatusReconciler:
        operation = self.deployments.latest(organization_id)
        if operation is None:
            raise ValueError(f"No deployment operation found for organization {organization_id}")
        logger.info(f"Resuming operation {operation.operation_id} of {organization_id} from its deployment record")
        management_session = self._management_session(
            self.config.management_role_arn, self.config.external_id, operation.region
        )
        cfn_client: CloudFormationClient = management_session.client("cloudformation", region_name=operation.region)
        reconciler = self._reconciler(operation, cfn_client)
        self._register(reconciler)
        return reconciler

    def deploy_organization(
        self,
        session: OrganizationSession,
        mode: DeploymentMode,
        selected_unit_ids: Iterable[str] = (),
        exclusions: Iterable[str] = ()
    ) -> DeploymentResponse:
        """
        Plan and submit one deployment of the analysis role.

        Not idempotent: every call submits a new operation.

        Raises:
            PlanValidationError: If the unit selection is invalid
            EmptyPlanError: If no target account remains
            DeploymentError: If submission fails
        """
        snapshot = self._snapshot(session)
        deployment_plan = plan(snapshot, mode, selected_unit_ids, exclusions)
        management_session = self._management_session(session.role_arn, session.external_id, session.region)
        coordinator = DeploymentCoordinator(management_session, self.config)
        result = coordinator.submit(
            deployment_plan,
            self.role_template(session.organization_id),
            self._role_external_id(session),
            snapshot,
        )
        self._track(result.operation, coordinator)
        return DeploymentResponse.from_submission(result)

    def resume_operation(
        self,
        session: OrganizationSession,
        operation_id: str,
        mode: DeploymentMode,
        selected_unit_ids: Iterable[str] = (),
        exclusions: Iterable[str] = ()
    ) -> StatusReconciler:
        """
        Start tracking an operation submitted by an earlier process.

        The plan is recomputed from the original inputs, which resolves the
        original target set.
        """
        snapshot = self._snapshot(session)
        deployment_plan = plan(snapshot, mode, selected_unit_ids, exclusions)
        management_session = self._management_session(session.role_arn, session.external_id, session.region)
        coordinator = DeploymentCoordinator(management_session, self.config)
        operation = coordinator.resume(
            deployment_plan,
            self.role_template(session.organization_id),
            self._role_external_id(session),
            operation_id,
        )
        return self._track(operation, coordinator)

    def reconciler_for(self, organization_id: str) -> StatusReconciler:
        """
        Return the reconciler of an organization's latest operation.

        Falls back to the recorded deployment when this process has not
        tracked the organization yet.

        Raises:
            ValueError: If no deployment is known for the organization
        """
        with self._lock:
            operation_id = self._latest_operation.get(organization_id)
            if operation_id is not None:
                return self._reconcilers[operation_id]
        return self._restore(organization_id)

    def get_deployment_status(self, organization_id: str) -> DeploymentStatusSummary:
        """Poll the latest operation of an organization once and return its summary."""
        return self.reconciler_for(organization_id).poll()

    def sync_organization_accounts(self, organization_id: str) -> SyncResult:
        """
        Upsert every successfully deployed account of the latest operation.

        Idempotent. Polls first so a freshly resumed operation syncs the
        accounts that have already succeeded.
        """
        reconciler = self.reconciler_for(organization_id)
        reconciler.poll()
        return reconciler.sync()

    def start_polling(self, organization_id: str) -> PollingTask:
        """Poll the latest operation of an organization in the background until it converges."""
        reconciler = self.reconciler_for(organization_id)

        def poll_once() -> bool:
            return reconciler.poll().state.is_converged

        task = PollingTask(
            poll_once,
            self.config.polling.interval_seconds,
            name=f"orgrollout-poll-{reconciler.operation_id}",
        )
        return task.start()

    def watch_self_registration(
        self,
        external_id: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> RegistrationWatch:
        """
        Watch for accounts registering themselves with external_id.

        A fresh external ID is generated when none is given; it is
        available as watch.external_id.
        """
        if external_id is None:
            external_id = generate_external_id(self.config.external_id_prefix)
        if timeout is None:
            timeout = self.config.self_registration_timeout_seconds
        logger.info(f"Watching for self-registrations with external ID {external_id}")
        return self.registrations.watch(external_id, timeout)

    def announce_registration(self, event: RegistrationEvent) -> bool:
        return self.registrations.announce(event)
