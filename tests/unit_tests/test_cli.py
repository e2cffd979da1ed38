"""
Unit tests for CLI module.
"""

import unittest
from unittest.mock import MagicMock, patch

from cli import build_parser, main
from config import MonitorSettings
from errors import ConfigurationError


class TestCLI(unittest.TestCase):
    """Test CLI argument parsing and entry point."""

    def test_build_parser_creates_parser(self):
        """Test parser is created with expected arguments."""
        parser = build_parser()

        args = parser.parse_args(["staging"])

        self.assertEqual(args.env, "staging")
        self.assertIsNone(args.project)
        self.assertIsNone(args.poll_interval)
        self.assertFalse(args.verbose)

    def test_parser_with_all_options(self):
        """Test parser handles all command-line options."""
        parser = build_parser()

        args = parser.parse_args(
            [
                "prod",
                "--project",
                "shop",
                "--config",
                "/etc/deploy.yaml",
                "--log-file",
                "run.log",
                "--report-file",
                "report.json",
                "--poll-interval",
                "2.5",
                "--max-retries",
                "40",
                "--grace-cycles",
                "3",
                "--stability-hold",
                "20",
                "--verbose",
            ]
        )

        self.assertEqual(args.env, "prod")
        self.assertEqual(args.project, "shop")
        self.assertEqual(args.config, "/etc/deploy.yaml")
        self.assertEqual(args.log_file, "run.log")
        self.assertEqual(args.report_file, "report.json")
        self.assertEqual(args.poll_interval, 2.5)
        self.assertEqual(args.max_retries, 40)
        self.assertEqual(args.grace_cycles, 3)
        self.assertEqual(args.stability_hold, 20.0)
        self.assertTrue(args.verbose)

    def test_parser_requires_env(self):
        """Test parser requires the env argument."""
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])

    @patch("cli.DeploymentOrchestrator")
    @patch("cli.setup_logging")
    @patch("cli.DeployConfig")
    def test_main_success(self, mock_config_class, mock_setup_logging, mock_orch_class):
        """Test main returns the outcome's exit code."""
        mock_config = MagicMock()
        mock_config.monitor = MonitorSettings()
        mock_config_class.load.return_value = mock_config
        mock_orch_class.return_value.run.return_value = MagicMock(exit_code=0)

        result = main(["staging", "--project", "shop", "--max-retries", "10"])

        self.assertEqual(result, 0)
        mock_config_class.load.assert_called_once()
        args, kwargs = mock_orch_class.call_args
        self.assertEqual(args[1:], ("shop", "staging"))
        self.assertEqual(kwargs["settings"].max_retries, 10)
        self.assertEqual(kwargs["settings"].poll_interval, 5.0)

    @patch("cli.os.getcwd", return_value="/home/dev/shop")
    @patch("cli.DeploymentOrchestrator")
    @patch("cli.setup_logging")
    @patch("cli.DeployConfig")
    def test_main_defaults_project_to_directory_name(
        self, mock_config_class, mock_setup_logging, mock_orch_class, mock_getcwd
    ):
        mock_config_class.load.return_value.monitor = MonitorSettings()
        mock_orch_class.return_value.run.return_value = MagicMock(exit_code=1)

        result = main(["staging"])

        self.assertEqual(result, 1)
        self.assertEqual(mock_orch_class.call_args.args[1], "shop")

    @patch("cli.DeploymentOrchestrator")
    @patch("cli.setup_logging")
    @patch("cli.DeployConfig")
    def test_main_config_error(self, mock_config_class, mock_setup_logging, mock_orch_class):
        mock_config_class.load.side_effect = ConfigurationError("no file")

        self.assertEqual(main(["staging"]), 1)
        mock_orch_class.assert_not_called()

    @patch("cli.DeploymentOrchestrator")
    @patch("cli.setup_logging")
    @patch("cli.DeployConfig")
    def test_main_invalid_override(self, mock_config_class, mock_setup_logging, mock_orch_class):
        mock_config_class.load.return_value.monitor = MonitorSettings()

        self.assertEqual(main(["staging", "--poll-interval", "0"]), 1)
        mock_orch_class.assert_not_called()

    @patch("cli.DeploymentOrchestrator")
    @patch("cli.setup_logging")
    @patch("cli.DeployConfig")
    def test_main_interrupted(self, mock_config_class, mock_setup_logging, mock_orch_class):
        mock_config_class.load.return_value.monitor = MonitorSettings()
        mock_orch_class.return_value.run.side_effect = KeyboardInterrupt

        self.assertEqual(main(["staging"]), 130)

    @patch("cli.setup_logging")
    @patch("cli.DeployConfig")
    def test_main_uses_log_file_option(self, mock_config_class, mock_setup_logging):
        mock_config_class.load.side_effect = ConfigurationError("no file")

        main(["staging", "--log-file", "custom.log", "--verbose"])

        mock_setup_logging.assert_called_once_with(verbose=True, log_file="custom.log")


if __name__ == "__main__":
    unittest.main()
