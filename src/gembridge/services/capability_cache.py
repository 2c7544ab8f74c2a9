from __future__ import annotations

import enum
import threading
from typing import Callable, Optional

from gembridge.domain.contracts import CapabilityVerdict


class CapabilityState(str, enum.Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    NOT_OK = "not-ok"


class CapabilityCell:
    """Resolve-once flag for an external tool capability.

    The first ``resolve`` call runs the probe under a lock; every later call
    returns the stored verdict. There is no reset: the installed toolchain is
    assumed stable for the life of the process.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._verdict: Optional[CapabilityVerdict] = None

    @property
    def state(self) -> CapabilityState:
        verdict = self._verdict
        if verdict is None:
            return CapabilityState.UNKNOWN
        return CapabilityState.OK if verdict.ok else CapabilityState.NOT_OK

    @property
    def verdict(self) -> Optional[CapabilityVerdict]:
        return self._verdict

    def resolve(self, probe: Callable[[], CapabilityVerdict]) -> CapabilityVerdict:
        verdict = self._verdict
        if verdict is not None:
            return verdict
        with self._lock:
            if self._verdict is None:
                self._verdict = probe()
            return self._verdict


# Process-wide cells shared by every gateway that does not inject its own.
INTERPRETER_CAPABILITY = CapabilityCell("interpreter")
GEM_VERSION_CAPABILITY = CapabilityCell("rubygems_version")
