"""Console entry point for the GCE node e2e runner CLI."""

from __future__ import annotations

import argparse
import json
import logging
import os
import queue
import time
from datetime import datetime
from typing import List

from config import RunnerConfig
from exceptions import NodeE2EError
from executors import RemoteCommandExecutor
from log_utils import setup_logging
from models import TestOutcome
from runner import collect_outcomes, create_runner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Provision GCE instances, run node e2e tests on them and clean up."
    )
    parser.add_argument("--project", required=True, help="GCE project the hosts live in")
    parser.add_argument("--zone", default="", help="GCE zone the hosts live in")
    parser.add_argument("--image-project", default="", help="Project of --images")
    parser.add_argument("--images", nargs="+", default=[], help="Images to test")
    parser.add_argument(
        "--image-config-file", default="", help="JSON file describing images to test"
    )
    parser.add_argument(
        "--image-config-dir",
        default="",
        help="Base directory for the image config file and metadata files",
    )
    parser.add_argument("--instance-name-prefix", default="")
    parser.add_argument("--instance-type", default="e2-medium", help="GCE machine type")
    parser.add_argument(
        "--instance-metadata",
        default="",
        help=(
            "key/value metadata for instances separated by '=' or '<', "
            "e.g. k1=v1,k2<path"
        ),
    )
    parser.add_argument(
        "--node-env",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Extra instance metadata entry that overrides all others",
    )
    parser.add_argument("--preemptible-instances", action="store_true")
    parser.add_argument(
        "--delete-instances",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Delete instances after the tests (default: true)",
    )
    parser.add_argument("--results-dir", default="_artifacts")
    parser.add_argument("--ssh-user", default="")
    parser.add_argument("--ssh-key", default="")
    parser.add_argument("--poll-interval", type=int, default=20)
    parser.add_argument(
        "--test-command",
        default="true",
        help="Shell command run on each ready instance",
    )
    parser.add_argument("--verbose", action="store_true")
    return parser


def print_report(outcomes: List[TestOutcome], start: float, end: float) -> None:
    """Log a summary of all outcomes."""
    logger.info("")
    logger.info("=" * 70)
    logger.info("NODE E2E REPORT")
    logger.info("=" * 70)
    logger.info(f"Total duration:  {end - start:.1f}s")
    logger.info(f"{'Image':<25} {'Host':<45} {'Result'}")
    logger.info("-" * 70)
    for outcome in outcomes:
        if outcome.succeeded:
            result = "PASSED"
        elif outcome.error is not None:
            result = f"ERROR: {str(outcome.error)[:60]}"
        else:
            result = "FAILED"
        logger.info(f"{outcome.short_name:<25} {outcome.host or 'N/A':<45} {result}")
    logger.info("=" * 70)


def export_results_json(outcomes: List[TestOutcome], results_dir: str) -> str:
    """Write outcomes to a JSON report and return its path."""
    report = {
        "generated_at": datetime.now().isoformat(),
        "results": [
            {
                "image": o.short_name,
                "host": o.host,
                "exit_ok": o.exit_ok,
                "error": str(o.error) if o.error is not None else None,
            }
            for o in outcomes
        ],
    }
    os.makedirs(results_dir, exist_ok=True)
    filename = os.path.join(
        results_dir, f"node-e2e-report-{datetime.now().strftime('%Y%m%d-%H%M%S')}.json"
    )
    with open(filename, "w") as f:
        json.dump(report, f, indent=2)
    logger.info(f"Detailed report exported to: {filename}")
    return filename


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, results_dir=args.results_dir)

    try:
        config = RunnerConfig.from_args(args)
        runner = create_runner("gce", config)
        runner.validate()
    except NodeE2EError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    start = time.time()
    results: "queue.Queue[TestOutcome]" = queue.Queue()
    executor = RemoteCommandExecutor(runner.remote, config.test_command)
    count = runner.start_tests(executor, results)
    outcomes = collect_outcomes(results, count)
    end = time.time()

    print_report(outcomes, start, end)
    export_results_json(outcomes, config.results_dir)
    return 0 if all(o.succeeded for o in outcomes) else 1
