import argparse
import yaml
from typing import Any, Dict, List, Optional
from .config import OrchestratorConfig
from .enums import DeploymentMode


def load_yaml_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Dictionary containing the loaded configuration, or empty dict if file not found
    """
    try:
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"Config file '{path}' not found. Continuing without it.")
        return {}


def parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments for the orgrollout tool.

    Args:
        argv: Argument list (defaults to sys.argv[1:])

    Returns:
        Parsed command line arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="orgrollout",
        description="orgrollout - deploy a read-only analysis role across an AWS organization"
    )

    parser.add_argument(
        '--config',
        required=True,
        type=str,
        help='Path to config YAML'
    )

    # Connection settings (override YAML if provided)
    parser.add_argument(
        '--region',
        dest='region',
        type=str,
        help='AWS region for the StackSet and its instances (default us-east-1)'
    )
    parser.add_argument(
        '--management-role-arn',
        dest='management_role_arn',
        type=str,
        help='Role in the management account used for detection and deployment'
    )
    parser.add_argument(
        '--external-id',
        dest='external_id',
        type=str,
        help='External ID for assuming the management role'
    )
    parser.add_argument(
        '--template-url',
        dest='template_url',
        type=str,
        help='S3 URL of the role template deployed to every account'
    )
    parser.add_argument(
        '--accounts-table',
        dest='accounts_table',
        type=str,
        help='DynamoDB table used as the account catalog'
    )
    parser.add_argument(
        '--deployments-table',
        dest='deployments_table',
        type=str,
        help='DynamoDB table recording the latest deployment of each organization'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('detect', help='Detect the organization structure')

    # Target selection is shared by deploy/status/sync so a later run can
    # re-plan the exact target set of an earlier deployment
    targets_parser = argparse.ArgumentParser(add_help=False)
    targets_parser.add_argument(
        '--mode',
        type=DeploymentMode,
        choices=list(DeploymentMode),
        default=DeploymentMode.ENTIRE_ORGANIZATION,
        help='Deploy to the entire organization or to specific organizational units'
    )
    targets_parser.add_argument(
        '--unit-id',
        dest='unit_ids',
        action='append',
        default=[],
        help='Organizational unit to target (repeatable, specific_units mode only)'
    )
    targets_parser.add_argument(
        '--exclude-account',
        dest='exclude_accounts',
        action='append',
        default=[],
        help='Account ID to leave out of the deployment (repeatable)'
    )

    deploy_parser = subparsers.add_parser(
        'deploy',
        parents=[targets_parser],
        help='Deploy the analysis role across the organization'
    )
    deploy_parser.add_argument(
        '--wait',
        action='store_true',
        help='Poll the deployment until it converges or stalls'
    )

    for name, help_text in (
        ('status', 'Report the per-account status of a deployment operation'),
        ('sync', 'Sync successfully deployed accounts into the account catalog'),
    ):
        command_parser = subparsers.add_parser(name, parents=[targets_parser], help=help_text)
        command_parser.add_argument(
            '--operation-id',
            dest='operation_id',
            type=str,
            help='Operation ID printed by the deploy command (defaults to the recorded latest deployment)'
        )

    return parser.parse_args(argv)


def merge_configs(yaml_config: Dict[str, Any], cli_args: argparse.Namespace) -> OrchestratorConfig:
    """
    Merge YAML configuration with CLI arguments and validate the result.

    Args:
        yaml_config: Configuration loaded from YAML file
        cli_args: Parsed command line arguments

    Returns:
        Validated OrchestratorConfig object

    Raises:
        ValueError: If configuration validation fails
        TypeError: If configuration has type errors
    """
    # Start with YAML
    merged = yaml_config.copy()

    # Apply CLI overrides (only if CLI provided them)
    cli_dict = {
        k: v for k, v in vars(cli_args).items()
        if k in OrchestratorConfig.model_fields and v is not None
    }
    merged.update(cli_dict)

    # Validate and return final config (will raise if required fields missing or wrong types)
    return OrchestratorConfig(**merged)
