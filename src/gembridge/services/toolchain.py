from __future__ import annotations

import copy
import logging
from typing import Any, BinaryIO, Dict, Optional, Sequence, Union

from gembridge.config import Settings, load_settings, resolve_gem_path
from gembridge.domain.contracts import CapabilityVerdict, Command, CommandRunner, ExecutionResult
from gembridge.execution.command_line import split_args, to_shell_command
from gembridge.execution.process_runner import ProcessRunner
from gembridge.observability.structured_log import log_json
from gembridge.services.capability_cache import (
    GEM_VERSION_CAPABILITY,
    INTERPRETER_CAPABILITY,
    CapabilityCell,
)
from gembridge.services.error_codes import detect_error_code
from gembridge.services.gem_commands import (
    Packages,
    gem_exec_argv,
    gem_install_argv,
    gem_list_argv,
    interpreter_probe_argv,
    parse_version,
    rubygems_version_argv,
    version_meets_floor,
)

logger = logging.getLogger(__name__)

OutputSink = Union[bytearray, BinaryIO, None]
Args = Union[str, Sequence[str], None]

RUBY_MISSING_MESSAGE = 'Ruby isn\'t present. The "ruby" command needs to be in the webserver\'s path'
RUBYGEMS_UNAVAILABLE_MESSAGE = (
    "Ruby is present, but there was a problem accessing the current rubygems version - "
    'is rubygems available? The "gem" command needs to be in the webserver\'s path.'
)


def _deliver(sink: OutputSink, data: bytes) -> None:
    if sink is None:
        return
    if isinstance(sink, bytearray):
        sink.extend(data)
        return
    sink.write(data)


class ToolchainGateway:
    """Probe, provision and invoke the Ruby/RubyGems toolchain.

    Every call blocks until the spawned process has been drained and exited.
    Probe verdicts live in process-wide ``CapabilityCell`` objects unless
    cells are injected.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        settings: Optional[Settings] = None,
        interpreter_cell: Optional[CapabilityCell] = None,
        version_cell: Optional[CapabilityCell] = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._runner = runner or ProcessRunner(drain_timeout_sec=self._settings.drain_timeout_sec)
        self._interpreter_cell = interpreter_cell or INTERPRETER_CAPABILITY
        self._version_cell = version_cell or GEM_VERSION_CAPABILITY
        self._flush = ""

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def for_request(self, flush: Optional[str] = None) -> "ToolchainGateway":
        """Copy sharing runner and cells that forwards a request's debug flush flag."""
        scoped = copy.copy(self)
        scoped._flush = str(flush or "").strip()
        return scoped

    def environment_overrides(self) -> Dict[str, str]:
        gem_path = str(resolve_gem_path(self._settings))
        env = {"HOME": gem_path, "GEM_HOME": gem_path}
        if self._flush:
            env["FLUSH"] = self._flush
        return env

    def _run(self, command: Command) -> ExecutionResult:
        return self._runner.run(command, self.environment_overrides())

    # ------------------------------------------------------------------
    # Capability probes
    # ------------------------------------------------------------------

    def ensure_interpreter_available(self) -> CapabilityVerdict:
        return self._interpreter_cell.resolve(self._probe_interpreter)

    def _probe_interpreter(self) -> CapabilityVerdict:
        result = self._run(interpreter_probe_argv(self._settings.ruby_bin))
        output = result.stdout_text.strip()
        ok = result.spawned and result.exit_code == 0 and "ruby" in output.lower()
        log_json(logger, "toolchain.probe", probe="interpreter", ok=ok, exit_code=result.exit_code, output=output)
        if not ok:
            return CapabilityVerdict(ok=False, reason=RUBY_MISSING_MESSAGE)
        return CapabilityVerdict(ok=True)

    def ensure_package_manager_version(self) -> CapabilityVerdict:
        interpreter = self.ensure_interpreter_available()
        if not interpreter.ok:
            return interpreter
        return self._version_cell.resolve(self._probe_rubygems_version)

    def _probe_rubygems_version(self) -> CapabilityVerdict:
        result = self._run(rubygems_version_argv(self._settings.gem_bin))
        detected = result.stdout_text.strip()
        log_json(
            logger,
            "toolchain.probe",
            probe="rubygems_version",
            exit_code=result.exit_code,
            version=detected,
        )
        if result.exit_code != 0:
            return CapabilityVerdict(ok=False, reason=RUBYGEMS_UNAVAILABLE_MESSAGE)
        parsed = parse_version(detected)
        if parsed is None or not version_meets_floor(parsed, strict=self._settings.strict_version_floor):
            return CapabilityVerdict(
                ok=False,
                reason=(
                    f"Rubygems is too old. You have version {detected or 'unknown'}, "
                    "but we need at least version 1.2. Please upgrade."
                ),
            )
        return CapabilityVerdict(ok=True)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def ensure_package_installed(
        self,
        name: str,
        version: Optional[str] = None,
        force_refresh: bool = False,
    ) -> Optional[str]:
        """Install ``name`` unless already listed. Returns an error message or None."""
        verdict = self.ensure_package_manager_version()
        if not verdict.ok:
            return verdict.reason

        gem_bin = self._settings.gem_bin
        listed = self._run(gem_list_argv(name, version, gem_bin=gem_bin))
        installed = listed.stdout_text.strip() == "true"
        if installed and not force_refresh:
            return None

        result = self._run(gem_install_argv(name, version, gem_bin=gem_bin))
        log_json(
            logger,
            "toolchain.gem_install",
            gem=name,
            version=version or "",
            force_refresh=bool(force_refresh),
            exit_code=result.exit_code,
        )
        if result.exit_code != 0:
            return (
                f"Could not install required gem {name}. Either manually install, "
                f"or repair error. Error message was: {result.stderr_text}"
            )
        return None

    def invoke_package_command(
        self,
        packages: Packages,
        command_name: str,
        args: Args = "",
        out: OutputSink = None,
        err: OutputSink = None,
    ) -> int:
        argv = gem_exec_argv(packages, command_name, split_args(args), ruby_bin=self._settings.ruby_bin)
        return self._collect(self._run(argv), out, err)

    def run_raw_command(
        self,
        command: str,
        args: Args = "",
        out: OutputSink = None,
        err: OutputSink = None,
    ) -> int:
        tail = args if isinstance(args, str) or args is None else to_shell_command(args)
        return self._collect(self._run(f"{command} {tail or ''}".rstrip()), out, err)

    def _collect(self, result: ExecutionResult, out: OutputSink, err: OutputSink) -> int:
        _deliver(out, result.stdout)
        _deliver(err, result.stderr)
        return result.exit_code

    def status(self) -> Dict[str, Any]:
        """Snapshot for health endpoints. Resolves the probes if still unknown."""
        interpreter = self.ensure_interpreter_available()
        rubygems = self.ensure_package_manager_version()
        return {
            "ready": interpreter.ok and rubygems.ok,
            "interpreter": _verdict_to_dict(self._interpreter_cell, interpreter),
            "rubygems": _verdict_to_dict(self._version_cell, rubygems),
            "gem_path": str(self._settings.gem_path),
            "strategy": getattr(self._runner, "strategy_name", ""),
        }


def _verdict_to_dict(cell: CapabilityCell, verdict: CapabilityVerdict) -> Dict[str, Any]:
    return {
        "state": cell.state.value,
        "ok": verdict.ok,
        "reason": verdict.reason,
        "error_code": "" if verdict.ok else detect_error_code(verdict.reason),
    }
