from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Sequence, Tuple, Union

Arg = Union[str, int, float, bool]


class HostError(RuntimeError):
    """A host API call failed (node unreachable, query rejected, ...)."""


@dataclass(frozen=True, slots=True)
class ProcessInfo:
    """One running script instance as reported by ``HostAPI.ps``."""

    pid: int
    filename: str
    threads: int
    args: Tuple[Arg, ...] = ()

    @property
    def target(self) -> str | None:
        if not self.args:
            return None
        first = self.args[0]
        return first if isinstance(first, str) and first else None


@dataclass(frozen=True, slots=True)
class ServerSnapshot:
    hostname: str
    money_max: float = 0.0
    money_available: float = 0.0
    security_min: float = 0.0
    security_base: float = 0.0
    security_current: float = 0.0
    growth: float = 0.0
    hack_time: float = 0.0
    hack_chance: float = 0.0
    required_hacking_level: int = 0
    purchased: bool = False


class HostAPI(Protocol):
    """
    The closed game API the engine drives. Every method may raise HostError.

    exec() returns the new pid, or 0 when the launch was rejected.
    """

    def scan(self, node: str) -> List[str]: ...

    def has_root_access(self, node: str) -> bool: ...

    def get_max_ram(self, node: str) -> float: ...

    def get_used_ram(self, node: str) -> float: ...

    def get_script_ram(self, script: str) -> float: ...

    def ps(self, node: str) -> List[ProcessInfo]: ...

    def exec(self, script: str, node: str, threads: int, *args: Arg) -> int: ...

    def kill(self, pid: int) -> bool: ...

    def script_kill(self, script: str, node: str) -> bool: ...

    def scp(self, scripts: Sequence[str], node: str, source: str) -> bool: ...

    def get_server(self, node: str) -> ServerSnapshot: ...

    def get_hacking_level(self) -> int: ...
