from typing import Callable, Dict
import argparse
import logging
import time

from botocore.exceptions import ClientError

from .config import OrchestratorConfig
from .usage import load_yaml_config, parse_cli_args, merge_configs
from .enums import OperationState
from .errors import DeploymentError, OrgRolloutError
from .orchestrator import OrganizationOrchestrator
from .output import OutputHandler
from .types import DeploymentStatusSummary

logger = logging.getLogger(__name__)


def setup_configuration(cli_args: argparse.Namespace, yaml_config: Dict) -> OrchestratorConfig:
    """
    Merge and validate configuration from YAML and CLI arguments.

    Args:
        cli_args: Parsed command line arguments
        yaml_config: Configuration loaded from YAML file

    Returns:
        Validated OrchestratorConfig object

    Raises:
        SystemExit: If configuration validation fails
    """
    try:
        final_config = merge_configs(yaml_config, cli_args)
    except (ValueError, TypeError) as e:
        OutputHandler.error("Configuration Error", e)
        exit(1)

    # template_body can be a whole template; keep the printed config readable
    OutputHandler.success("Final Config", final_config.model_dump(exclude={"template_body"}))

    return final_config


def wait_for_convergence(
    orchestrator: OrganizationOrchestrator,
    organization_id: str,
    sleep: Callable[[float], None] = time.sleep
) -> DeploymentStatusSummary:
    """
    Poll the latest operation of an organization until it converges or stalls.

    Args:
        orchestrator: Orchestrator tracking the operation
        organization_id: Organization whose latest operation is polled
        sleep: Sleep function used between polls

    Returns:
        The last status summary
    """
    interval = orchestrator.config.polling.interval_seconds
    while True:
        summary = orchestrator.get_deployment_status(organization_id)
        if summary.state.is_converged or summary.state == OperationState.STALLED:
            return summary
        sleep(interval)


def handle_detect(orchestrator: OrganizationOrchestrator, cli_args: argparse.Namespace) -> None:
    snapshot = orchestrator.detect_organization()
    OutputHandler.organization(snapshot)


def handle_deploy(orchestrator: OrganizationOrchestrator, cli_args: argparse.Namespace) -> None:
    """
    Detect the organization, submit one deployment and optionally wait for it.

    Args:
        orchestrator: Orchestrator to deploy with
        cli_args: Parsed deploy arguments
    """
    session = orchestrator.open_session()
    response = orchestrator.deploy_organization(
        session,
        cli_args.mode,
        cli_args.unit_ids,
        cli_args.exclude_accounts,
    )
    OutputHandler.submission(response)

    if cli_args.wait:
        summary = wait_for_convergence(orchestrator, session.organization_id)
        OutputHandler.deployment_status(summary)


def _organization_id(orchestrator: OrganizationOrchestrator, cli_args: argparse.Namespace) -> str:
    """
    Detect the organization, attaching to --operation-id when one is given.

    Without an operation ID the orchestrator falls back to the recorded
    latest deployment of the organization.
    """
    session = orchestrator.open_session()
    if cli_args.operation_id:
        orchestrator.resume_operation(
            session,
            cli_args.operation_id,
            cli_args.mode,
            cli_args.unit_ids,
            cli_args.exclude_accounts,
        )
    return session.organization_id


def handle_status(orchestrator: OrganizationOrchestrator, cli_args: argparse.Namespace) -> None:
    summary = orchestrator.get_deployment_status(_organization_id(orchestrator, cli_args))
    OutputHandler.deployment_status(summary)


def handle_sync(orchestrator: OrganizationOrchestrator, cli_args: argparse.Namespace) -> None:
    result = orchestrator.sync_organization_accounts(_organization_id(orchestrator, cli_args))
    OutputHandler.success(
        f"Synced {result.synced_accounts} accounts for organization {result.organization_id}",
        {"accounts": [account.account_id for account in result.accounts]},
    )


COMMAND_HANDLERS: Dict[str, Callable[[OrganizationOrchestrator, argparse.Namespace], None]] = {
    "detect": handle_detect,
    "deploy": handle_deploy,
    "status": handle_status,
    "sync": handle_sync,
}


def main() -> None:
    """Main entry point for the orgrollout CLI."""
    logging.basicConfig(level=logging.INFO)

    cli_args = parse_cli_args()
    yaml_config = load_yaml_config(cli_args.config)

    final_config = setup_configuration(cli_args, yaml_config)

    try:
        orchestrator = OrganizationOrchestrator(final_config)
        COMMAND_HANDLERS[cli_args.command](orchestrator, cli_args)

    except DeploymentError as e:
        OutputHandler.error(f"Deployment Error ({e.category.value})", e)
        if e.account_ids:
            print(f"Affected accounts: {', '.join(e.account_ids)}")
        if e.suggestion:
            print(e.suggestion)
        logger.error(f"Deployment failed: {e}", exc_info=True)
        exit(1)
    except OrgRolloutError as e:
        OutputHandler.error(type(e).__name__, e)
        logger.error(f"{cli_args.command} failed: {e}", exc_info=True)
        exit(1)
    except ValueError as e:
        OutputHandler.error("Configuration Error", e)
        logger.error(f"Invalid configuration: {e}", exc_info=True)
        exit(1)
    except ClientError as e:
        error_code = e.response['Error']['Code']
        OutputHandler.error(f"AWS API Error ({error_code})", e)
        logger.error(f"AWS API error: {e}", exc_info=True)
        exit(1)


if __name__ == "__main__":
    main()
