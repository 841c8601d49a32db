"""
Deployment target planning.

plan() is the single place where the management account and caller
exclusions are removed from a deployment. It is a pure function of its
inputs so a retried or resumed deployment always resolves the same
target set.
"""

import logging
from typing import Iterable, List, Set

from .enums import AccountLifecycleStatus, DeploymentMode
from .errors import EmptyPlanError, PlanValidationError
from .types import DeploymentPlan, OrganizationSnapshot

logger = logging.getLogger(__name__)


def _selected_units(
    snapshot: OrganizationSnapshot,
    mode: DeploymentMode,
    selected_unit_ids: List[str]
) -> List[str]:
    """
    Resolve the units a deployment reaches, in snapshot order.

    Raises:
        PlanValidationError: If the selection does not match the mode or names unknown units
    """
    if mode == DeploymentMode.ENTIRE_ORGANIZATION:
        if selected_unit_ids:
            raise PlanValidationError("Units cannot be selected when deploying to the entire organization")
        return [unit.id for unit in snapshot.units]

    if not selected_unit_ids:
        raise PlanValidationError("At least one organizational unit must be selected for specific_units mode")

    unknown = [unit_id for unit_id in selected_unit_ids if snapshot.get_unit(unit_id) is None]
    if unknown:
        raise PlanValidationError(
            f"Organizational units not found in organization {snapshot.organization_id}: {unknown}"
        )

    reached: Set[str] = set()
    for unit_id in selected_unit_ids:
        reached.update(snapshot.descendant_unit_ids(unit_id))
    return [unit.id for unit in snapshot.units if unit.id in reached]


def plan(
    snapshot: OrganizationSnapshot,
    mode: DeploymentMode,
    selected_unit_ids: Iterable[str] = (),
    exclusions: Iterable[str] = ()
) -> DeploymentPlan:
    """
    Compute the concrete target accounts for a deployment.

    A selected unit reaches every account beneath it. The management
    account is always removed because it is registered through the direct
    role flow, as are explicit exclusions and accounts that are not active.

    Args:
        snapshot: Detected organization structure
        mode: Entire organization or specific units
        selected_unit_ids: Units to deploy to (specific_units mode only)
        exclusions: Account IDs to leave out

    Returns:
        DeploymentPlan with a non-empty resolved target set

    Raises:
        PlanValidationError: If the unit selection is invalid for the mode
        EmptyPlanError: If no target account remains
    """
    selection = list(dict.fromkeys(selected_unit_ids))
    excluded = set(exclusions)
    excluded.add(snapshot.management_account_id)

    unit_ids = _selected_units(snapshot, mode, selection)
    root_id = snapshot.root_unit.id

    targets: Set[str] = set()
    inactive: Set[str] = set()
    root_level: Set[str] = set()
    target_units: List[str] = []
    for unit_id in unit_ids:
        unit = snapshot.get_unit(unit_id)
        if unit is None:
            continue
        unit_has_targets = False
        for account in unit.accounts:
            if account.id in excluded:
                continue
            if account.lifecycle_status != AccountLifecycleStatus.ACTIVE:
                inactive.add(account.id)
                continue
            targets.add(account.id)
            unit_has_targets = True
            if unit_id == root_id:
                root_level.add(account.id)
        if unit_has_targets:
            target_units.append(unit_id)

    if inactive:
        logger.info(f"Skipping {len(inactive)} inactive accounts: {sorted(inactive)}")

    if not targets:
        raise EmptyPlanError(
            f"No target accounts remain in organization {snapshot.organization_id} "
            f"after removing the management account, exclusions and inactive accounts"
        )

    return DeploymentPlan(
        organization_id=snapshot.organization_id,
        management_account_id=snapshot.management_account_id,
        mode=mode,
        selected_unit_ids=tuple(selection),
        resolved_target_account_ids=frozenset(targets),
        target_unit_ids=tuple(target_units),
        root_unit_id=root_id,
        root_level_account_ids=frozenset(root_level),
        skipped_inactive_account_ids=frozenset(inactive),
    )
