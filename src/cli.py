"""Console entry point for the deploy handoff CLI."""

from __future__ import annotations

import argparse
import logging
import os
from typing import List

from config import DeployConfig, DEFAULT_CONFIG_PATH
from errors import ConfigurationError
from log_utils import setup_logging
from orchestrator import DeploymentOrchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description=(
            "Trigger a Jenkins job for a project environment and, if it succeeds, "
            "watch the Kubernetes rollout until the new pods are healthy."
        )
    )
    parser.add_argument("env", help="Environment name from the project's config")
    parser.add_argument(
        "--project",
        default=None,
        help="Project name (default: name of the current directory)",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the deploy config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--log-file", default="deploy-handoff.log")
    parser.add_argument("--report-file", help="Write a JSON report to this path")

    timing = parser.add_argument_group("rollout timing (override config)")
    timing.add_argument("--poll-interval", type=float, metavar="SECONDS")
    timing.add_argument("--max-retries", type=int, metavar="N")
    timing.add_argument("--grace-cycles", type=int, metavar="N")
    timing.add_argument("--stability-hold", type=float, metavar="SECONDS")

    parser.add_argument("--verbose", action="store_true")
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)

    project = args.project or os.path.basename(os.getcwd())
    logger.info(f"project: {project}, env: {args.env}")

    try:
        config = DeployConfig.load(args.config)
        settings = config.monitor.with_overrides(
            poll_interval=args.poll_interval,
            max_retries=args.max_retries,
            grace_cycles=args.grace_cycles,
            stability_hold=args.stability_hold,
        )
    except ConfigurationError as e:
        logger.critical(f"FATAL: {e}")
        return 1

    orchestrator = DeploymentOrchestrator(
        config,
        project,
        args.env,
        settings=settings,
        report_file=args.report_file,
    )
    try:
        outcome = orchestrator.run()
    except KeyboardInterrupt:
        logger.error("Interrupted; the rollout itself is left as-is")
        return 130
    return outcome.exit_code
