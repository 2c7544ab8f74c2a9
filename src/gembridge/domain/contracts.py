from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence, Union

SPAWN_FAILED_EXIT_CODE = -1
ANY_VERSION = ">= 0"

Command = Union[str, Sequence[str]]


@dataclass(frozen=True)
class ExecutionResult:
    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""
    timed_out: bool = False
    strategy: str = ""

    @property
    def spawned(self) -> bool:
        return self.exit_code != SPAWN_FAILED_EXIT_CODE

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class CapabilityVerdict:
    ok: bool
    reason: str = ""


@dataclass(frozen=True)
class PackageRequirement:
    name: str
    constraint: str = ANY_VERSION


class CommandRunner(Protocol):
    def run(
        self,
        command: Command,
        env_overrides: Optional[Mapping[str, str]] = None,
    ) -> ExecutionResult:
        ...
