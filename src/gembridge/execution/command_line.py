from __future__ import annotations

import os
import shlex
import subprocess
from typing import List, Optional, Sequence, Union

from gembridge.domain.contracts import Command


def quote_argv(argv: Sequence[str], os_name: Optional[str] = None) -> str:
    """Join an argument vector into one shell command line, quoting each argument."""
    items = [str(item) for item in argv]
    if (os_name or os.name) == "nt":
        return subprocess.list2cmdline(items)
    return shlex.join(items)


def to_shell_command(command: Command) -> str:
    if isinstance(command, str):
        return command
    return quote_argv(command)


def split_args(args: Union[str, Sequence[str], None]) -> List[str]:
    """Normalize forwarded arguments to a list.

    Strings are split with POSIX shell rules so callers can keep passing a
    single argument string.
    """
    if args is None:
        return []
    if isinstance(args, str):
        raw = args.strip()
        if not raw:
            return []
        return shlex.split(raw)
    return [str(item) for item in args]
