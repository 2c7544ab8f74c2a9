import io
import os
import tempfile
import threading
import time
import unittest
from pathlib import Path

from gembridge.config import Settings
from gembridge.domain.contracts import SPAWN_FAILED_EXIT_CODE, ExecutionResult
from gembridge.execution.process_runner import ProcessRunner
from gembridge.services.capability_cache import CapabilityCell, CapabilityState
from gembridge.services.toolchain import RUBY_MISSING_MESSAGE, ToolchainGateway

RUBY_OK = ExecutionResult(exit_code=0, stdout=b"ruby 3.2.2 (2023-03-30 revision e51014f9c0) [x86_64-linux]\n")
GEM_OK = ExecutionResult(exit_code=0, stdout=b"3.4.10\n")


class _ScriptedRunner:
    """Records every spawn and answers by the first two argv items."""

    strategy_name = "scripted"

    def __init__(self, responses=None, delay_sec: float = 0.0):
        self.responses = {
            "ruby -v": RUBY_OK,
            "gem environment": GEM_OK,
            "gem list": ExecutionResult(exit_code=0, stdout=b"false\n"),
            "gem install": ExecutionResult(exit_code=0, stdout=b"Successfully installed foo-1.0\n"),
        }
        self.responses.update(responses or {})
        self.calls = []
        self._delay_sec = delay_sec
        self._lock = threading.Lock()

    def run(self, command, env_overrides=None):
        argv = command.split() if isinstance(command, str) else list(command)
        with self._lock:
            self.calls.append((argv, dict(env_overrides or {})))
        if self._delay_sec:
            time.sleep(self._delay_sec)
        return self.responses.get(" ".join(argv[:2]), ExecutionResult(exit_code=0))

    def commands(self):
        return [" ".join(argv[:2]) for argv, _ in self.calls]


class TestToolchainGateway(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.gem_path = Path(self.tmp.name) / "gems"

    def tearDown(self):
        self.tmp.cleanup()

    def _gateway(self, runner, **settings):
        return ToolchainGateway(
            runner=runner,
            settings=Settings(gem_path=self.gem_path, **settings),
            interpreter_cell=CapabilityCell("interpreter"),
            version_cell=CapabilityCell("rubygems_version"),
        )

    def test_interpreter_probe_runs_once(self):
        runner = _ScriptedRunner()
        gateway = self._gateway(runner)
        self.assertTrue(gateway.ensure_interpreter_available().ok)
        self.assertTrue(gateway.ensure_interpreter_available().ok)
        self.assertEqual(runner.commands(), ["ruby -v"])

    def test_interpreter_failure_is_cached(self):
        runner = _ScriptedRunner({"ruby -v": ExecutionResult(exit_code=127, stderr=b"sh: ruby: not found\n")})
        gateway = self._gateway(runner)
        first = gateway.ensure_interpreter_available()
        second = gateway.ensure_interpreter_available()
        self.assertFalse(first.ok)
        self.assertEqual(first, second)
        self.assertEqual(first.reason, RUBY_MISSING_MESSAGE)
        self.assertEqual(runner.commands(), ["ruby -v"])

    def test_empty_interpreter_output_is_not_ok(self):
        runner = _ScriptedRunner({"ruby -v": ExecutionResult(exit_code=0, stdout=b"")})
        self.assertFalse(self._gateway(runner).ensure_interpreter_available().ok)

    def test_unspawnable_interpreter_probe_is_not_ok(self):
        runner = _ScriptedRunner({"ruby -v": ExecutionResult(exit_code=SPAWN_FAILED_EXIT_CODE)})
        self.assertFalse(self._gateway(runner).ensure_interpreter_available().ok)

    def test_concurrent_first_access_spawns_once(self):
        runner = _ScriptedRunner(delay_sec=0.05)
        gateway = self._gateway(runner)
        verdicts = []
        threads = [
            threading.Thread(target=lambda: verdicts.append(gateway.ensure_interpreter_available()))
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(verdicts), 8)
        self.assertTrue(all(v.ok for v in verdicts))
        self.assertEqual(runner.commands(), ["ruby -v"])

    def test_cell_states(self):
        runner = _ScriptedRunner()
        cell = CapabilityCell("interpreter")
        gateway = ToolchainGateway(
            runner=runner,
            settings=Settings(gem_path=self.gem_path),
            interpreter_cell=cell,
            version_cell=CapabilityCell("rubygems_version"),
        )
        self.assertEqual(cell.state, CapabilityState.UNKNOWN)
        gateway.ensure_interpreter_available()
        self.assertEqual(cell.state, CapabilityState.OK)

    def test_version_check_skipped_when_interpreter_missing(self):
        runner = _ScriptedRunner({"ruby -v": ExecutionResult(exit_code=127)})
        verdict = self._gateway(runner).ensure_package_manager_version()
        self.assertFalse(verdict.ok)
        self.assertEqual(verdict.reason, RUBY_MISSING_MESSAGE)
        self.assertEqual(runner.commands(), ["ruby -v"])

    def test_old_rubygems_is_rejected_with_detected_version(self):
        runner = _ScriptedRunner({"gem environment": ExecutionResult(exit_code=0, stdout=b"1.1.9\n")})
        gateway = self._gateway(runner)
        verdict = gateway.ensure_package_manager_version()
        self.assertFalse(verdict.ok)
        self.assertIn("Rubygems is too old", verdict.reason)
        self.assertIn("1.1.9", verdict.reason)
        gateway.ensure_package_manager_version()
        self.assertEqual(runner.commands().count("gem environment"), 1)

    def test_prerelease_rubygems_is_accepted(self):
        runner = _ScriptedRunner({"gem environment": ExecutionResult(exit_code=0, stdout=b"3.5.0.dev\n")})
        self.assertTrue(self._gateway(runner).ensure_package_manager_version().ok)

    def test_rubygems_2_0_rejected_unless_strict(self):
        response = {"gem environment": ExecutionResult(exit_code=0, stdout=b"2.0.0\n")}
        self.assertFalse(self._gateway(_ScriptedRunner(response)).ensure_package_manager_version().ok)
        strict = self._gateway(_ScriptedRunner(response), strict_version_floor=True)
        self.assertTrue(strict.ensure_package_manager_version().ok)

    def test_rubygems_probe_failure(self):
        runner = _ScriptedRunner({"gem environment": ExecutionResult(exit_code=1, stderr=b"boom")})
        verdict = self._gateway(runner).ensure_package_manager_version()
        self.assertFalse(verdict.ok)
        self.assertIn("problem accessing the current rubygems version", verdict.reason)

    def test_listed_gem_is_not_reinstalled(self):
        runner = _ScriptedRunner({"gem list": ExecutionResult(exit_code=0, stdout=b"true\n")})
        error = self._gateway(runner).ensure_package_installed("foo", None, False)
        self.assertIsNone(error)
        self.assertNotIn("gem install", runner.commands())

    def test_force_refresh_always_installs(self):
        runner = _ScriptedRunner({"gem list": ExecutionResult(exit_code=0, stdout=b"true\n")})
        error = self._gateway(runner).ensure_package_installed("foo", None, True)
        self.assertIsNone(error)
        self.assertEqual(runner.commands().count("gem install"), 1)

    def test_missing_gem_is_installed_with_version(self):
        runner = _ScriptedRunner()
        error = self._gateway(runner).ensure_package_installed("foo", "~> 1.0")
        self.assertIsNone(error)
        argvs = [argv for argv, _ in runner.calls]
        self.assertIn(["gem", "list", "foo", "-i", "-v", "~> 1.0"], argvs)
        self.assertIn(["gem", "install", "foo", "-v", "~> 1.0", "--no-document"], argvs)

    def test_install_failure_embeds_stderr(self):
        runner = _ScriptedRunner(
            {"gem install": ExecutionResult(exit_code=2, stderr=b"ERROR: Could not find a valid gem 'foo'")}
        )
        error = self._gateway(runner).ensure_package_installed("foo")
        self.assertIsNotNone(error)
        self.assertIn("Could not install required gem foo", error)
        self.assertIn("Could not find a valid gem 'foo'", error)

    def test_install_propagates_probe_failure_verbatim(self):
        runner = _ScriptedRunner({"ruby -v": ExecutionResult(exit_code=127)})
        error = self._gateway(runner).ensure_package_installed("foo")
        self.assertEqual(error, RUBY_MISSING_MESSAGE)
        self.assertEqual(runner.commands(), ["ruby -v"])

    def test_spawned_commands_get_gem_home(self):
        runner = _ScriptedRunner()
        self._gateway(runner).ensure_interpreter_available()
        _, env = runner.calls[0]
        self.assertEqual(env["HOME"], str(self.gem_path))
        self.assertEqual(env["GEM_HOME"], str(self.gem_path))
        self.assertNotIn("FLUSH", env)
        self.assertTrue(self.gem_path.is_dir())

    def test_request_flush_flag_is_forwarded(self):
        runner = _ScriptedRunner()
        gateway = self._gateway(runner)
        gateway.for_request(flush="all").run_raw_command("echo", "hi")
        gateway.run_raw_command("echo", "hi")
        self.assertEqual(runner.calls[0][1]["FLUSH"], "all")
        self.assertNotIn("FLUSH", runner.calls[1][1])

    def test_invoke_package_command_builds_single_invocation(self):
        runner = _ScriptedRunner(
            {"ruby -rrubygems": ExecutionResult(exit_code=0, stdout=b"Sass 3.4.0\n", stderr=b"warn\n")}
        )
        out, err = bytearray(), bytearray()
        code = self._gateway(runner).invoke_package_command({"sass": "3.4.0"}, "sass", "--version", out, err)
        self.assertEqual(code, 0)
        self.assertEqual(bytes(out), b"Sass 3.4.0\n")
        self.assertEqual(bytes(err), b"warn\n")
        argv, _ = runner.calls[-1]
        self.assertIn('load Gem.bin_path("sass", "sass", "3.4.0")', argv)
        self.assertEqual(argv[-2:], ["--", "--version"])

    def test_output_sinks_accept_binary_writers(self):
        runner = _ScriptedRunner({"echo hi": ExecutionResult(exit_code=4, stdout=b"hi\n", stderr=b"oops")})
        out, err = io.BytesIO(), io.BytesIO()
        code = self._gateway(runner).run_raw_command("echo", "hi", out, err)
        self.assertEqual(code, 4)
        self.assertEqual(out.getvalue(), b"hi\n")
        self.assertEqual(err.getvalue(), b"oops")

    def test_run_raw_command_concatenates(self):
        runner = _ScriptedRunner()
        gateway = self._gateway(runner)
        gateway.run_raw_command("compass", "compile --force")
        gateway.run_raw_command("compass", ["compile", "my site"])
        gateway.run_raw_command("compass")
        self.assertEqual(runner.calls[0][0], ["compass", "compile", "--force"])
        self.assertEqual(runner.calls[1][0], ["compass", "compile", "'my", "site'"])
        self.assertEqual(runner.calls[2][0], ["compass"])

    def test_status_snapshot(self):
        gateway = self._gateway(_ScriptedRunner())
        status = gateway.status()
        self.assertTrue(status["ready"])
        self.assertEqual(status["interpreter"]["state"], "ok")
        self.assertEqual(status["rubygems"]["state"], "ok")
        self.assertEqual(status["strategy"], "scripted")


@unittest.skipUnless(os.name == "posix", "needs a POSIX shell")
class TestToolchainGatewayEndToEnd(unittest.TestCase):
    def test_invoking_unavailable_gem_command_fails(self):
        with tempfile.TemporaryDirectory() as tmp:
            gateway = ToolchainGateway(
                runner=ProcessRunner(drain_timeout_sec=30),
                settings=Settings(gem_path=Path(tmp) / "gems", ruby_bin="gembridge-missing-ruby"),
                interpreter_cell=CapabilityCell("interpreter"),
                version_cell=CapabilityCell("rubygems_version"),
            )
            out, err = bytearray(), bytearray()
            code = gateway.invoke_package_command("sass", "sass", "--version", out, err)
            self.assertNotEqual(code, 0)
            self.assertTrue(code == SPAWN_FAILED_EXIT_CODE or len(err) > 0)
            self.assertFalse(gateway.ensure_interpreter_available().ok)
