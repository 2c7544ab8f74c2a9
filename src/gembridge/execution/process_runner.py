from __future__ import annotations

import logging
import os
from typing import Dict, Mapping, Optional

from gembridge.domain.contracts import Command, ExecutionResult
from gembridge.execution.command_line import to_shell_command
from gembridge.execution.drain import DrainStrategy, select_drain_strategy
from gembridge.observability.structured_log import log_json

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_TIMEOUT_SEC = 120
MAX_DRAIN_TIMEOUT_SEC = 600


class ProcessRunner:
    """Run one shell command at a time and capture both output streams.

    The drain strategy is chosen once when the runner is built. Environment
    overrides only reach the child; ``os.environ`` is never touched.
    """

    def __init__(
        self,
        strategy: Optional[DrainStrategy] = None,
        drain_timeout_sec: float = DEFAULT_DRAIN_TIMEOUT_SEC,
        base_env: Optional[Mapping[str, str]] = None,
        replace_env: bool = False,
        shell_executable: Optional[str] = None,
    ) -> None:
        self._strategy = strategy or select_drain_strategy()
        self._drain_timeout_sec = max(0.01, min(float(drain_timeout_sec), MAX_DRAIN_TIMEOUT_SEC))
        self._base_env = dict(base_env) if base_env is not None else None
        self._replace_env = bool(replace_env)
        self._shell_executable = shell_executable

    @property
    def strategy_name(self) -> str:
        return self._strategy.name

    @property
    def drain_timeout_sec(self) -> float:
        return self._drain_timeout_sec

    def build_environment(self, env_overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        overrides = {str(k): str(v) for k, v in (env_overrides or {}).items()}
        if self._replace_env:
            return overrides
        env = dict(self._base_env if self._base_env is not None else os.environ)
        env.update(overrides)
        return env

    def run(
        self,
        command: Command,
        env_overrides: Optional[Mapping[str, str]] = None,
    ) -> ExecutionResult:
        shell_command = to_shell_command(command)
        result = self._strategy.execute(
            shell_command,
            env=self.build_environment(env_overrides),
            timeout_sec=self._drain_timeout_sec,
            shell_executable=self._shell_executable,
        )
        log_json(
            logger,
            "process.exited",
            level=logging.DEBUG,
            strategy=result.strategy,
            command=shell_command,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            stdout_bytes=len(result.stdout),
            stderr_bytes=len(result.stderr),
        )
        return result
