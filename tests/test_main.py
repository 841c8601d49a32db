import argparse
import pytest
from unittest.mock import MagicMock, patch, mock_open
from typing import Any, Dict, List
from botocore.exceptions import ClientError
from orgrollout.usage import load_yaml_config, parse_cli_args
from orgrollout.main import (
    handle_deploy,
    handle_detect,
    handle_status,
    handle_sync,
    main,
    setup_configuration,
    wait_for_convergence,
)
from orgrollout.config import OrchestratorConfig
from orgrollout.enums import DeploymentMode, ErrorCategory, OperationState
from orgrollout.errors import DeploymentError, PlanValidationError
from orgrollout.types import DeploymentResponse, DeploymentStatusSummary, SyncResult


def _summary(state: OperationState) -> DeploymentStatusSummary:
    return DeploymentStatusSummary(
        organization_id="o-test",
        operation_id="op-1",
        state=state,
        successful_deployments=0,
        failed_deployments=0,
        in_progress_deployments=1,
        total_target_accounts=1,
        accounts=[],
    )


def _orchestrator() -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.config = OrchestratorConfig(trusted_account_id="999999999999")
    orchestrator.open_session.return_value.organization_id = "o-test"
    return orchestrator


class TestLoadYamlConfig:
    """Test load_yaml_config function with various scenarios."""

    def test_load_yaml_config_valid_file(self) -> None:
        yaml_content = """
        trusted_account_id: "999999999999"
        region: eu-west-1
        polling:
          interval_seconds: 30
        """
        with patch('builtins.open', mock_open(read_data=yaml_content)):
            result = load_yaml_config("test.yaml")
            assert result["trusted_account_id"] == "999999999999"
            assert result["polling"]["interval_seconds"] == 30

    def test_load_yaml_config_file_not_found(self) -> None:
        """Test handling of missing YAML file."""
        with patch('builtins.open', side_effect=FileNotFoundError):
            with patch('builtins.print'):
                result = load_yaml_config("nonexistent.yaml")
            assert result == {}

    def test_load_yaml_config_empty_file(self) -> None:
        """Test loading empty YAML file."""
        with patch('builtins.open', mock_open(read_data="")):
            result = load_yaml_config("empty.yaml")
            assert result == {}

    def test_load_yaml_config_invalid_yaml(self) -> None:
        """Test handling of invalid YAML content."""
        with patch('builtins.open', mock_open(read_data="invalid: yaml: content:")):
            with pytest.raises(Exception):
                load_yaml_config("invalid.yaml")


class TestParseCliArgs:
    """Test parse_cli_args function."""

    def test_detect(self) -> None:
        args = parse_cli_args(['--config', 'test.yaml', 'detect'])
        assert args.config == "test.yaml"
        assert args.command == "detect"

    def test_deploy_defaults(self) -> None:
        args = parse_cli_args(['--config', 'test.yaml', 'deploy'])
        assert args.mode == DeploymentMode.ENTIRE_ORGANIZATION
        assert args.unit_ids == []
        assert args.exclude_accounts == []
        assert args.wait is False

    def test_deploy_specific_units(self) -> None:
        args = parse_cli_args([
            '--config', 'test.yaml', '--region', 'eu-west-1',
            'deploy', '--mode', 'specific_units',
            '--unit-id', 'ou-1', '--unit-id', 'ou-2',
            '--exclude-account', '222222222222', '--wait',
        ])
        assert args.region == "eu-west-1"
        assert args.mode == DeploymentMode.SPECIFIC_UNITS
        assert args.unit_ids == ["ou-1", "ou-2"]
        assert args.exclude_accounts == ["222222222222"]
        assert args.wait is True

    def test_status_operation_id_optional(self) -> None:
        args = parse_cli_args(['--config', 'test.yaml', 'status'])
        assert args.command == "status"
        assert args.operation_id is None

    def test_deployments_table_override(self) -> None:
        args = parse_cli_args(['--config', 'test.yaml', '--deployments-table', 'deployments', 'status'])
        assert args.deployments_table == "deployments"

    def test_sync_with_operation_id(self) -> None:
        args = parse_cli_args(['--config', 'test.yaml', 'sync', '--operation-id', 'op-1'])
        assert args.command == "sync"
        assert args.operation_id == "op-1"

    def test_missing_command(self) -> None:
        with pytest.raises(SystemExit):
            parse_cli_args(['--config', 'test.yaml'])

    def test_missing_config(self) -> None:
        with pytest.raises(SystemExit):
            parse_cli_args(['detect'])

    def test_invalid_mode(self) -> None:
        with pytest.raises(SystemExit):
            parse_cli_args(['--config', 'test.yaml', 'deploy', '--mode', 'everything'])


class TestSetupConfiguration:
    """Test setup_configuration function."""

    def test_setup_configuration_success(self) -> None:
        """Test successful configuration setup."""
        cli_args = argparse.Namespace(config="test.yaml", region="eu-west-1")

        with patch('builtins.print') as mock_print:
            result = setup_configuration(cli_args, {"trusted_account_id": "999999999999"})

        assert isinstance(result, OrchestratorConfig)
        assert result.region == "eu-west-1"
        mock_print.assert_any_call("\n✅ Final Config")

    def test_setup_configuration_value_error(self) -> None:
        """Test configuration setup with a missing required field."""
        yaml_config: Dict[str, Any] = {}
        cli_args = argparse.Namespace(config="test.yaml")

        with patch('builtins.print'):
            with pytest.raises(SystemExit) as exc_info:
                setup_configuration(cli_args, yaml_config)
            assert exc_info.value.code == 1


class TestWaitForConvergence:
    """Test wait_for_convergence function."""

    def test_polls_until_converged(self) -> None:
        orchestrator = _orchestrator()
        orchestrator.get_deployment_status.side_effect = [
            _summary(OperationState.SUBMITTED),
            _summary(OperationState.IN_PROGRESS),
            _summary(OperationState.CONVERGED_SUCCESS),
        ]
        sleeps: List[float] = []

        summary = wait_for_convergence(orchestrator, "o-test", sleep=sleeps.append)

        assert summary.state == OperationState.CONVERGED_SUCCESS
        assert sleeps == [10.0, 10.0]

    def test_stops_when_stalled(self) -> None:
        orchestrator = _orchestrator()
        orchestrator.get_deployment_status.return_value = _summary(OperationState.STALLED)
        sleeps: List[float] = []

        summary = wait_for_convergence(orchestrator, "o-test", sleep=sleeps.append)

        assert summary.state == OperationState.STALLED
        assert sleeps == []


class TestHandlers:
    """Test the per-command handlers."""

    def test_handle_detect(self) -> None:
        orchestrator = _orchestrator()
        with patch('orgrollout.main.OutputHandler.organization') as mock_output:
            handle_detect(orchestrator, argparse.Namespace())

        mock_output.assert_called_once_with(orchestrator.detect_organization.return_value)

    def test_handle_deploy_without_wait(self) -> None:
        orchestrator = _orchestrator()
        orchestrator.deploy_organization.return_value = DeploymentResponse(
            operation_id="op-1", message="initiated", stack_set_name="s", target_accounts=2
        )
        cli_args = argparse.Namespace(
            mode=DeploymentMode.SPECIFIC_UNITS, unit_ids=["ou-1"], exclude_accounts=[], wait=False
        )

        with patch('builtins.print'):
            handle_deploy(orchestrator, cli_args)

        orchestrator.deploy_organization.assert_called_once_with(
            orchestrator.open_session.return_value, DeploymentMode.SPECIFIC_UNITS, ["ou-1"], []
        )
        orchestrator.get_deployment_status.assert_not_called()

    def test_handle_deploy_with_wait(self) -> None:
        orchestrator = _orchestrator()
        orchestrator.deploy_organization.return_value = DeploymentResponse(
            operation_id="op-1", message="initiated", stack_set_name="s", target_accounts=1
        )
        orchestrator.get_deployment_status.return_value = _summary(OperationState.CONVERGED_SUCCESS)
        cli_args = argparse.Namespace(
            mode=DeploymentMode.ENTIRE_ORGANIZATION, unit_ids=[], exclude_accounts=[], wait=True
        )

        with patch('builtins.print'):
            handle_deploy(orchestrator, cli_args)

        orchestrator.get_deployment_status.assert_called_once_with("o-test")

    def test_handle_status_resumes_operation(self) -> None:
        orchestrator = _orchestrator()
        orchestrator.get_deployment_status.return_value = _summary(OperationState.IN_PROGRESS)
        cli_args = argparse.Namespace(
            operation_id="op-1", mode=DeploymentMode.ENTIRE_ORGANIZATION, unit_ids=[], exclude_accounts=["2"]
        )

        with patch('builtins.print'):
            handle_status(orchestrator, cli_args)

        orchestrator.resume_operation.assert_called_once_with(
            orchestrator.open_session.return_value, "op-1", DeploymentMode.ENTIRE_ORGANIZATION, [], ["2"]
        )

    def test_handle_status_uses_recorded_deployment(self) -> None:
        orchestrator = _orchestrator()
        orchestrator.get_deployment_status.return_value = _summary(OperationState.IN_PROGRESS)
        cli_args = argparse.Namespace(
            operation_id=None, mode=DeploymentMode.ENTIRE_ORGANIZATION, unit_ids=[], exclude_accounts=[]
        )

        with patch('builtins.print'):
            handle_status(orchestrator, cli_args)

        orchestrator.resume_operation.assert_not_called()
        orchestrator.get_deployment_status.assert_called_once_with("o-test")

    def test_handle_sync(self) -> None:
        orchestrator = _orchestrator()
        orchestrator.sync_organization_accounts.return_value = SyncResult(organization_id="o-test", synced_accounts=0)
        cli_args = argparse.Namespace(
            operation_id="op-1", mode=DeploymentMode.ENTIRE_ORGANIZATION, unit_ids=[], exclude_accounts=[]
        )

        with patch('builtins.print') as mock_print:
            handle_sync(orchestrator, cli_args)

        orchestrator.sync_organization_accounts.assert_called_once_with("o-test")
        mock_print.assert_any_call("\n✅ Synced 0 accounts for organization o-test")


class TestMain:
    """Test main error handling."""

    def _run(self, error: Exception) -> int:
        argv = ['orgrollout', '--config', 'test.yaml', 'deploy']
        with patch('sys.argv', argv), \
                patch('orgrollout.main.load_yaml_config', return_value={"trusted_account_id": "999999999999"}), \
                patch('orgrollout.main.OrganizationOrchestrator') as mock_orchestrator_class, \
                patch('builtins.print'):
            with patch.dict('orgrollout.main.COMMAND_HANDLERS', {"deploy": MagicMock(side_effect=error)}):
                with pytest.raises(SystemExit) as exc_info:
                    main()
            mock_orchestrator_class.assert_called_once()
        return int(exc_info.value.code)

    def test_deployment_error_exits_1(self) -> None:
        assert self._run(DeploymentError(ErrorCategory.EXECUTION_ROLE_MISSING, account_ids=["222222222222"])) == 1

    def test_plan_validation_error_exits_1(self) -> None:
        assert self._run(PlanValidationError("no units selected")) == 1

    def test_client_error_exits_1(self) -> None:
        error = ClientError({"Error": {"Code": "AccessDenied", "Message": "Denied"}}, "CreateStackSet")
        assert self._run(error) == 1

    def test_success_does_not_exit(self) -> None:
        argv = ['orgrollout', '--config', 'test.yaml', 'detect']
        with patch('sys.argv', argv), \
                patch('orgrollout.main.load_yaml_config', return_value={"trusted_account_id": "999999999999"}), \
                patch('orgrollout.main.OrganizationOrchestrator'), \
                patch('builtins.print'):
            handle = MagicMock()
            with patch.dict('orgrollout.main.COMMAND_HANDLERS', {"detect": handle}):
                main()

        handle.assert_called_once()
