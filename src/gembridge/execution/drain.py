from __future__ import annotations

import logging
import os
import selectors
import subprocess
from typing import Dict, Mapping, Optional, Protocol

from gembridge.domain.contracts import SPAWN_FAILED_EXIT_CODE, ExecutionResult
from gembridge.observability.structured_log import log_json

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 4096


class DrainStrategy(Protocol):
    name: str

    def execute(
        self,
        shell_command: str,
        env: Mapping[str, str],
        timeout_sec: float,
        shell_executable: Optional[str] = None,
    ) -> ExecutionResult:
        ...


def normalize_exit_code(returncode: int) -> int:
    """Map signal terminations (negative on POSIX) to the shell's 128+N form.

    Keeps -1 free to mean "could not spawn".
    """
    if returncode < 0:
        return 128 + abs(returncode)
    return returncode


def _spawn_failed(strategy: str, shell_command: str, exc: Exception) -> ExecutionResult:
    log_json(
        logger,
        "process.spawn_failed",
        level=logging.WARNING,
        strategy=strategy,
        command=shell_command,
        error=str(exc),
    )
    return ExecutionResult(exit_code=SPAWN_FAILED_EXIT_CODE, strategy=strategy)


class SelectDrainStrategy:
    """Pipe-backed execution that multiplexes stdout/stderr with a selector.

    ``selectors.DefaultSelector`` is poll/epoll/kqueue backed, so descriptors
    above FD_SETSIZE are fine.
    """

    name = "select"

    def execute(
        self,
        shell_command: str,
        env: Mapping[str, str],
        timeout_sec: float,
        shell_executable: Optional[str] = None,
    ) -> ExecutionResult:
        try:
            proc = subprocess.Popen(
                shell_command,
                shell=True,
                executable=shell_executable,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                close_fds=True,
                env=dict(env),
            )
        except (OSError, ValueError) as exc:
            return _spawn_failed(self.name, shell_command, exc)

        # The child never receives interactive input.
        if proc.stdin is not None:
            proc.stdin.close()

        assert proc.stdout is not None and proc.stderr is not None
        out_fd = proc.stdout.fileno()
        err_fd = proc.stderr.fileno()
        buffers: Dict[int, bytearray] = {out_fd: bytearray(), err_fd: bytearray()}
        timed_out = False
        try:
            os.set_blocking(out_fd, False)
            os.set_blocking(err_fd, False)
            timed_out = self._drain(buffers, timeout_sec)
        except OSError as exc:
            # Stop draining; the partial output is still returned.
            timed_out = True
            log_json(
                logger,
                "process.drain_failed",
                level=logging.WARNING,
                pid=proc.pid,
                error=str(exc),
            )
        finally:
            proc.stdout.close()
            proc.stderr.close()
            exit_code = normalize_exit_code(proc.wait())

        if timed_out:
            log_json(
                logger,
                "process.drain_timeout",
                level=logging.WARNING,
                pid=proc.pid,
                timeout_sec=timeout_sec,
                stdout_bytes=len(buffers[out_fd]),
                stderr_bytes=len(buffers[err_fd]),
            )
        return ExecutionResult(
            exit_code=exit_code,
            stdout=bytes(buffers[out_fd]),
            stderr=bytes(buffers[err_fd]),
            timed_out=timed_out,
            strategy=self.name,
        )

    def _drain(self, buffers: Dict[int, bytearray], timeout_sec: float) -> bool:
        """Read every pipe until EOF. Returns True when cut off by the timeout."""
        with selectors.DefaultSelector() as selector:
            for fd in buffers:
                selector.register(fd, selectors.EVENT_READ)
            while selector.get_map():
                ready = selector.select(timeout_sec)
                if not ready:
                    return True
                for key, _ in ready:
                    fd = key.fd
                    try:
                        chunk = os.read(fd, READ_CHUNK_BYTES)
                    except BlockingIOError:
                        continue
                    if not chunk:
                        selector.unregister(fd)
                        continue
                    buffers[fd].extend(chunk)
        return False


class BlockingExecStrategy:
    """Single blocking run for hosts without select() on pipes.

    Reduced fidelity: stderr is folded into stdout and the result's stderr is
    always empty. No drain timeout applies.
    """

    name = "blocking"

    def execute(
        self,
        shell_command: str,
        env: Mapping[str, str],
        timeout_sec: float,
        shell_executable: Optional[str] = None,
    ) -> ExecutionResult:
        try:
            completed = subprocess.run(
                shell_command,
                shell=True,
                executable=shell_executable,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=dict(env),
                check=False,
            )
        except (OSError, ValueError) as exc:
            return _spawn_failed(self.name, shell_command, exc)
        return ExecutionResult(
            exit_code=normalize_exit_code(completed.returncode),
            stdout=completed.stdout or b"",
            stderr=b"",
            strategy=self.name,
        )


def select_drain_strategy(os_name: Optional[str] = None) -> DrainStrategy:
    """Pick the drain strategy for this host once, at runner construction."""
    if (os_name or os.name) == "posix":
        return SelectDrainStrategy()
    return BlockingExecStrategy()
