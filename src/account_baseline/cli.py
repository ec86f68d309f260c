"""AWS Account Baseline - command line entry point.

Usage:
    account-baseline plan
    account-baseline apply
    account-baseline teardown [--yes]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from botocore.exceptions import ClientError, NoCredentialsError, ProfileNotFound

from . import __version__
from .baseline.orchestrator import BaselineOrchestrator
from .baseline.reporter import RunReport
from .core.aws_client import AWSClientManager
from .core.config import Configuration, ConfigurationError
from .core.safety import SafetyManager


logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="account-baseline",
        description="Apply an idempotent governance baseline to an AWS account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s plan                         # Show what would change
  %(prog)s apply                        # Converge the account to the baseline
  %(prog)s --output json apply          # Machine-readable report on stdout
  %(prog)s teardown --yes               # Remove owned baseline resources
        """,
    )

    parser.add_argument(
        "--config", help="Path to configuration file (default: auto-detect config.yaml)"
    )
    parser.add_argument("--profile", help="AWS profile name to use for credentials")
    parser.add_argument(
        "--region", help="AWS region to use (overrides configuration file)"
    )
    parser.add_argument(
        "--output",
        choices=["text", "json"],
        default="text",
        help="Report format written to stdout (default: text)",
    )
    parser.add_argument(
        "--report-file", help="Also write the JSON report to this path"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"AWS Account Baseline v{__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True
    subparsers.add_parser("plan", help="Inspect the account and report planned changes")
    subparsers.add_parser("apply", help="Converge the account to the baseline")
    teardown = subparsers.add_parser(
        "teardown", help="Remove baseline resources created by this tool"
    )
    teardown.add_argument(
        "--yes", action="store_true", help="Skip the interactive confirmation"
    )

    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    """Configure root logging on stderr so stdout carries only the report."""
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT, stream=sys.stderr)
    if level != "DEBUG":
        for noisy in ("botocore", "boto3", "urllib3"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def load_configuration(args: argparse.Namespace) -> Configuration:
    """Load configuration and apply command line overrides.

    Raises:
        ConfigurationError: When configuration is missing or invalid
    """
    config = Configuration(args.config)
    if args.region:
        config.set_override("aws.region", args.region)
    if args.profile:
        config.set_override("aws.profile_name", args.profile)
    return config


def write_report(report: RunReport, path: str) -> None:
    """Write the JSON report to a file."""
    report_path = Path(path)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(report.to_json() + "\n", encoding="utf-8")


def confirm_teardown(orchestrator: BaselineOrchestrator, config: Configuration) -> bool:
    controls = [control.identifier for control in reversed(orchestrator.catalog.load())]
    return SafetyManager().confirm_teardown(config.get_region(), controls)


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point.

    Returns:
        Exit code: 0 success, 1 partial failure, 2 fatal error, 130 interrupted
    """
    try:
        args = parse_arguments(argv)

        try:
            config = load_configuration(args)
        except ConfigurationError as e:
            print(f"❌ Configuration error: {e}")
            return EXIT_FATAL

        configure_logging("DEBUG" if args.verbose else config.get_log_level())

        try:
            aws_client = AWSClientManager(
                profile_name=config.get_profile_name(),
                region_name=config.get_region(),
                call_timeout=config.get_call_timeout(),
            )
        except (NoCredentialsError, ProfileNotFound, ClientError) as e:
            print(f"❌ AWS client initialization failed: {e}")
            return EXIT_FATAL

        orchestrator = BaselineOrchestrator(config, aws_client)

        try:
            if args.command == "teardown" and not args.yes:
                if not confirm_teardown(orchestrator, config):
                    print("Teardown cancelled; no resources were changed.")
                    return EXIT_PARTIAL_FAILURE
            report = getattr(orchestrator, args.command)()
        except ConfigurationError as e:
            print(f"❌ Baseline error: {e}")
            return EXIT_FATAL

        print(report.to_json() if args.output == "json" else report.render())
        if args.report_file:
            write_report(report, args.report_file)
            logger.info(f"Report written to {args.report_file}")

        return EXIT_SUCCESS if report.success else EXIT_PARTIAL_FAILURE

    except KeyboardInterrupt:
        print("\n\n👋 Operation cancelled by user.")
        return EXIT_INTERRUPTED

    except Exception as e:
        logger.exception("Unexpected error")
        print(f"\n❌ Unexpected error: {e}")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
