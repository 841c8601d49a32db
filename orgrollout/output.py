"""
Centralized output handling with consistent formatting.

This module provides a single point of control for all user-facing output,
ensuring consistent formatting and making it easy to modify output behavior.
"""

import json
import logging
from typing import Any, Dict, Optional

from .types import DeploymentResponse, DeploymentStatusSummary, OrganizationSnapshot

logger = logging.getLogger(__name__)


class OutputHandler:
    """Centralized output handling with consistent formatting."""

    @staticmethod
    def poll_completed(summary: DeploymentStatusSummary) -> None:
        """
        Log poll completion with statistics.

        Args:
            summary: Status summary produced by the poll
        """
        logger.info(
            f"Operation {summary.operation_id} is {summary.state.value}: "
            f"{summary.successful_deployments} succeeded, "
            f"{summary.failed_deployments} failed, "
            f"{summary.in_progress_deployments} in progress"
        )

    @staticmethod
    def error(title: str, error: Exception) -> None:
        """
        Print formatted error message.

        Args:
            title: Error title
            error: Exception that occurred
        """
        print(f"\n🚨 {title}:\n{error}\n")

    @staticmethod
    def warning(title: str, detail: Optional[str] = None) -> None:
        print(f"\n⚠️  {title}")
        if detail:
            print(detail)

    @staticmethod
    def success(title: str, data: Optional[Any] = None) -> None:
        """
        Print formatted success message.

        Args:
            title: Success message title
            data: Optional data to display (dict will be JSON formatted)
        """
        print(f"\n✅ {title}")
        if not data:
            return

        if isinstance(data, dict):
            print(json.dumps(data, indent=2, default=str))
            return

        print(data)

    @staticmethod
    def section_header(title: str) -> None:
        """
        Print section header with divider.

        Args:
            title: Section title
        """
        print("\n" + "=" * 80)
        print(title)
        print("=" * 80)

    @staticmethod
    def organization(snapshot: OrganizationSnapshot) -> None:
        """
        Print the organization tree, one line per unit and account.

        Args:
            snapshot: Detected organization snapshot
        """
        OutputHandler.section_header(
            f"ORGANIZATION {snapshot.organization_id} (management account {snapshot.management_account_id})"
        )
        depth: Dict[Optional[str], int] = {}
        for unit in snapshot.units:
            level = depth.get(unit.parent_id, -1) + 1
            depth[unit.id] = level
            indent = "  " * level
            print(f"{indent}{unit.name} ({unit.id})")
            for account in unit.accounts:
                print(f"{indent}  - {account.display_name} ({account.id}) [{account.lifecycle_status.value}]")

    @staticmethod
    def submission(response: DeploymentResponse) -> None:
        """
        Print the outcome of a deployment submission, including any warning.

        Args:
            response: Deployment response from the orchestrator
        """
        OutputHandler.success(response.message, {
            "operation_id": response.operation_id,
            "stack_set_name": response.stack_set_name,
            "target_accounts": response.target_accounts,
        })
        if response.warning:
            excluded = "\n".join(f"  - {a.name} ({a.id})" for a in response.excluded_accounts)
            OutputHandler.warning(response.warning, excluded)
            if response.suggestion:
                print(response.suggestion)

    @staticmethod
    def deployment_status(summary: DeploymentStatusSummary) -> None:
        """
        Print a status summary. Failing accounts are always listed with
        their reason codes, since counts alone are not actionable.

        Args:
            summary: Status summary produced by the reconciler
        """
        OutputHandler.section_header(f"DEPLOYMENT {summary.operation_id}: {summary.state.value.upper()}")
        print(
            f"{summary.successful_deployments}/{summary.total_target_accounts} succeeded, "
            f"{summary.failed_deployments} failed, "
            f"{summary.in_progress_deployments} in progress"
        )
        for entry in summary.failures:
            reason = entry.reason.value if entry.reason else "unknown"
            detail = f" - {entry.status_reason}" if entry.status_reason else ""
            print(f"  ❌ {entry.account_id}: {reason}{detail}")
