import io
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import MagicMock, patch

from gembridge import cli


class TestCli(unittest.TestCase):
    def test_parse_packages(self):
        self.assertEqual(cli._parse_packages("sass"), "sass")
        self.assertEqual(
            cli._parse_packages("sass=3.4.0,compass"),
            {"sass": "3.4.0", "compass": ""},
        )

    def test_require_success(self):
        gateway = MagicMock()
        gateway.ensure_package_installed.return_value = None
        with patch.object(cli, "ToolchainGateway", return_value=gateway):
            buf = io.StringIO()
            with redirect_stdout(buf):
                code = cli.main(["--require", "sass", "--gem-version", "3.4.0", "--force-refresh"])
        self.assertEqual(code, 0)
        gateway.ensure_package_installed.assert_called_once_with("sass", "3.4.0", True)
        self.assertIn("Gem available: sass", buf.getvalue())

    def test_require_failure_prints_reason(self):
        gateway = MagicMock()
        gateway.ensure_package_installed.return_value = "Ruby isn't present."
        with patch.object(cli, "ToolchainGateway", return_value=gateway):
            buf = io.StringIO()
            with redirect_stderr(buf):
                code = cli.main(["--require", "sass"])
        self.assertEqual(code, 1)
        self.assertIn("Ruby isn't present.", buf.getvalue())

    def test_exec_forwards_arguments(self):
        gateway = MagicMock()
        gateway.invoke_package_command.return_value = 0
        with patch.object(cli, "ToolchainGateway", return_value=gateway):
            code = cli.main(["--exec", "sass=3.4.0", "sass", "--", "--version"])
        self.assertEqual(code, 0)
        args, _ = gateway.invoke_package_command.call_args
        self.assertEqual(args[:3], ({"sass": "3.4.0"}, "sass", ["--version"]))

    def test_exec_spawn_failure_maps_to_one(self):
        gateway = MagicMock()
        gateway.invoke_package_command.return_value = -1
        with patch.object(cli, "ToolchainGateway", return_value=gateway):
            self.assertEqual(cli.main(["--exec", "sass", "sass"]), 1)
