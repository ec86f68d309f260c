"""Tests for the command line entry point."""

import argparse
import json

import pytest
from unittest.mock import Mock, patch
from botocore.exceptions import NoCredentialsError

from account_baseline import cli
from account_baseline.baseline.catalog import CycleError
from account_baseline.baseline.reporter import RunReport
from account_baseline.core.config import Configuration, ConfigurationError


def make_report(success=True):
    report = Mock(spec=RunReport)
    report.success = success
    report.render.return_value = "rendered report"
    report.to_json.return_value = json.dumps({"success": success})
    return report


@pytest.fixture
def config():
    return Configuration.from_dict({"aws": {"region": "eu-west-1"}})


@pytest.fixture
def orchestrator():
    orchestrator = Mock()
    for command in ("plan", "apply", "teardown"):
        getattr(orchestrator, command).return_value = make_report()
    return orchestrator


@pytest.fixture
def patched(config, orchestrator):
    with patch.object(cli, "load_configuration", return_value=config) as load, \
            patch.object(cli, "configure_logging") as configure, \
            patch.object(cli, "AWSClientManager") as aws_client, \
            patch.object(cli, "BaselineOrchestrator", return_value=orchestrator):
        yield {"load": load, "configure": configure, "aws_client": aws_client}


class TestParseArguments:

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments([])

    def test_global_options(self):
        args = cli.parse_arguments(
            ["--region", "eu-west-1", "--output", "json", "--report-file", "out.json", "plan"]
        )

        assert args.command == "plan"
        assert args.region == "eu-west-1"
        assert args.output == "json"
        assert args.report_file == "out.json"

    def test_teardown_yes(self):
        assert cli.parse_arguments(["teardown", "--yes"]).yes is True
        assert cli.parse_arguments(["teardown"]).yes is False

    def test_invalid_output_format(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(["--output", "xml", "plan"])


class TestLoadConfiguration:

    def test_command_line_overrides(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("aws:\n  region: us-east-1\n")
        args = argparse.Namespace(config=str(config_file), region="eu-west-1", profile="audit")

        config = cli.load_configuration(args)

        assert config.get_region() == "eu-west-1"
        assert config.get_profile_name() == "audit"

    def test_missing_file(self, tmp_path):
        args = argparse.Namespace(config=str(tmp_path / "missing.yaml"), region=None, profile=None)

        with pytest.raises(ConfigurationError):
            cli.load_configuration(args)


class TestMain:

    def test_plan_success(self, patched, orchestrator, capsys):
        assert cli.main(["plan"]) == cli.EXIT_SUCCESS

        orchestrator.plan.assert_called_once_with()
        orchestrator.apply.assert_not_called()
        assert "rendered report" in capsys.readouterr().out

    def test_client_built_from_configuration(self, patched):
        cli.main(["plan"])

        patched["aws_client"].assert_called_once_with(
            profile_name=None, region_name="eu-west-1", call_timeout=30
        )

    def test_apply_partial_failure(self, patched, orchestrator):
        orchestrator.apply.return_value = make_report(success=False)

        assert cli.main(["apply"]) == cli.EXIT_PARTIAL_FAILURE

    def test_json_output(self, patched, capsys):
        cli.main(["--output", "json", "apply"])

        assert json.loads(capsys.readouterr().out) == {"success": True}

    def test_report_file(self, patched, orchestrator, tmp_path):
        report_file = tmp_path / "reports" / "run.json"

        cli.main(["--report-file", str(report_file), "apply"])

        assert json.loads(report_file.read_text()) == {"success": True}

    def test_verbose_enables_debug_logging(self, patched):
        cli.main(["-v", "plan"])

        patched["configure"].assert_called_once_with("DEBUG")

    def test_configuration_error(self, patched, orchestrator, capsys):
        patched["load"].side_effect = ConfigurationError("Required field 'aws.region' is missing")

        assert cli.main(["apply"]) == cli.EXIT_FATAL
        assert "aws.region" in capsys.readouterr().out
        orchestrator.apply.assert_not_called()

    def test_missing_credentials(self, patched, orchestrator):
        patched["aws_client"].side_effect = NoCredentialsError()

        assert cli.main(["apply"]) == cli.EXIT_FATAL
        orchestrator.apply.assert_not_called()

    def test_invalid_catalog(self, patched, orchestrator):
        orchestrator.apply.side_effect = CycleError("Dependency cycle detected among controls: a, b")

        assert cli.main(["apply"]) == cli.EXIT_FATAL

    def test_unexpected_error(self, patched, orchestrator):
        orchestrator.apply.side_effect = RuntimeError("boom")

        assert cli.main(["apply"]) == cli.EXIT_FATAL

    def test_interrupted(self, patched, orchestrator):
        orchestrator.apply.side_effect = KeyboardInterrupt()

        assert cli.main(["apply"]) == cli.EXIT_INTERRUPTED

    def test_teardown_requires_confirmation(self, patched, orchestrator):
        with patch.object(cli, "confirm_teardown", return_value=False) as confirm:
            assert cli.main(["teardown"]) == cli.EXIT_PARTIAL_FAILURE

        confirm.assert_called_once()
        orchestrator.teardown.assert_not_called()

    def test_teardown_confirmed(self, patched, orchestrator):
        with patch.object(cli, "confirm_teardown", return_value=True):
            assert cli.main(["teardown"]) == cli.EXIT_SUCCESS

        orchestrator.teardown.assert_called_once_with()

    def test_teardown_yes_skips_prompt(self, patched, orchestrator):
        with patch.object(cli, "confirm_teardown") as confirm:
            assert cli.main(["teardown", "--yes"]) == cli.EXIT_SUCCESS

        confirm.assert_not_called()
        orchestrator.teardown.assert_called_once_with()
