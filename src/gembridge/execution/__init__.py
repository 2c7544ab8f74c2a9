"""Subprocess execution with multiplexed stdout/stderr draining."""
from gembridge.execution.command_line import quote_argv, split_args, to_shell_command
from gembridge.execution.drain import (
    BlockingExecStrategy,
    DrainStrategy,
    SelectDrainStrategy,
    select_drain_strategy,
)
from gembridge.execution.process_runner import DEFAULT_DRAIN_TIMEOUT_SEC, ProcessRunner

__all__ = [
    "BlockingExecStrategy",
    "DEFAULT_DRAIN_TIMEOUT_SEC",
    "DrainStrategy",
    "ProcessRunner",
    "SelectDrainStrategy",
    "quote_argv",
    "select_drain_strategy",
    "split_args",
    "to_shell_command",
]
