"""
Unit tests for CLI module.
"""

import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from cli import build_parser, export_results_json, main
from exceptions import ConfigurationError
from models import TestOutcome


def _runner_with(outcomes):
    runner = MagicMock()

    def start_tests(executor, results):
        for outcome in outcomes:
            results.put(outcome)
        return len(outcomes)

    runner.start_tests.side_effect = start_tests
    return runner


class TestCLI(unittest.TestCase):
    """Test CLI argument parsing and entry point."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def test_build_parser_defaults(self):
        """Test parser defaults for a minimal invocation."""
        args = build_parser().parse_args(["--project", "test-project"])

        self.assertEqual(args.project, "test-project")
        self.assertEqual(args.instance_type, "e2-medium")
        self.assertEqual(args.images, [])
        self.assertTrue(args.delete_instances)
        self.assertFalse(args.preemptible_instances)
        self.assertEqual(args.poll_interval, 20)

    def test_parser_with_all_options(self):
        """Test parser handles all command-line options."""
        args = build_parser().parse_args(
            [
                "--project", "test-project",
                "--zone", "us-central1-a",
                "--image-project", "cos-cloud",
                "--images", "cos-105", "cos-109",
                "--image-config-file", "images.json",
                "--image-config-dir", "/etc/node-e2e",
                "--instance-name-prefix", "ci",
                "--instance-type", "n2-standard-4",
                "--instance-metadata", "a=1,b<file",
                "--node-env", "X=1",
                "--node-env", "Y=2",
                "--preemptible-instances",
                "--no-delete-instances",
                "--results-dir", "/tmp/out",
                "--ssh-user", "prow",
                "--ssh-key", "/keys/gce",
                "--poll-interval", "5",
                "--test-command", "make test",
                "--verbose",
            ]
        )

        self.assertEqual(args.images, ["cos-105", "cos-109"])
        self.assertEqual(args.node_env, ["X=1", "Y=2"])
        self.assertTrue(args.preemptible_instances)
        self.assertFalse(args.delete_instances)
        self.assertEqual(args.poll_interval, 5)
        self.assertEqual(args.test_command, "make test")
        self.assertTrue(args.verbose)

    def test_parser_requires_project(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["--zone", "us-central1-a"])

    @patch("cli.setup_logging")
    @patch("cli.create_runner")
    def test_main_all_passed(self, mock_create_runner, mock_setup_logging):
        runner = _runner_with(
            [
                TestOutcome(short_name="a", host="h-a", exit_ok=True),
                TestOutcome(short_name="b", host="h-b", exit_ok=True),
            ]
        )
        mock_create_runner.return_value = runner

        result = main(
            ["--project", "test-project", "--zone", "z", "--results-dir", self.tmp.name]
        )

        self.assertEqual(result, 0)
        runner.validate.assert_called_once()
        self.assertEqual(mock_create_runner.call_args[0][0], "gce")
        self.assertTrue(
            any(f.startswith("node-e2e-report-") for f in os.listdir(self.tmp.name))
        )

    @patch("cli.setup_logging")
    @patch("cli.create_runner")
    def test_main_with_failure(self, mock_create_runner, mock_setup_logging):
        mock_create_runner.return_value = _runner_with(
            [
                TestOutcome(short_name="a", host="h-a", exit_ok=True),
                TestOutcome(short_name="b", host="h-b", error=RuntimeError("boom")),
            ]
        )

        result = main(["--project", "test-project", "--results-dir", self.tmp.name])

        self.assertEqual(result, 1)

    @patch("cli.setup_logging")
    @patch("cli.create_runner")
    def test_main_invalid_configuration(self, mock_create_runner, mock_setup_logging):
        runner = MagicMock()
        runner.validate.side_effect = ConfigurationError("must specify --zone flag")
        mock_create_runner.return_value = runner

        result = main(["--project", "test-project"])

        self.assertEqual(result, 2)
        runner.start_tests.assert_not_called()

    def test_export_results_json(self):
        outcomes = [
            TestOutcome(short_name="a", host="h-a", exit_ok=True),
            TestOutcome(short_name="b", error=ValueError("bad")),
        ]

        path = export_results_json(outcomes, self.tmp.name)

        with open(path) as f:
            report = json.load(f)
        self.assertEqual(report["results"][0]["image"], "a")
        self.assertIsNone(report["results"][0]["error"])
        self.assertEqual(report["results"][1]["error"], "bad")


if __name__ == "__main__":
    unittest.main()
