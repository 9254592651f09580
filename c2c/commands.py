from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .config import Config
from .host import HostAPI, HostError

logger = logging.getLogger("c2c.commands")


class TaskKind(str, Enum):
    HACK = "hack"
    GROW = "grow"
    WEAKEN = "weaken"
    DDOS = "ddos"
    SHARE = "share"


class Goal(str, Enum):
    HACK = "hack"
    DDOS = "ddos"
    SHARE = "share"


# Kinds that make up a balanced unit set, in tie-break order.
HGW: Tuple[TaskKind, ...] = (TaskKind.HACK, TaskKind.GROW, TaskKind.WEAKEN)


@dataclass(frozen=True, slots=True)
class TaskMixRatios:
    """Fraction of a target's threads that each of hack/grow/weaken should get."""

    hack: float
    grow: float
    weaken: float

    def __post_init__(self) -> None:
        for name in ("hack", "grow", "weaken"):
            v = getattr(self, name)
            if not math.isfinite(v) or v < 0:
                raise ValueError(f"ratio {name} must be a non-negative number, got {v!r}")
        total = self.hack + self.grow + self.weaken
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"task mix ratios must sum to 1, got {total:.6f}")

    def get(self, kind: TaskKind) -> float:
        return float(getattr(self, kind.value))

    def as_dict(self) -> Dict[TaskKind, float]:
        return {k: self.get(k) for k in HGW}

    def unit_set_cost(self, costs: Mapping[TaskKind, float]) -> float:
        return sum(self.get(k) * float(costs[k]) for k in HGW)

    @classmethod
    def from_config(cls, cfg: Config) -> "TaskMixRatios":
        return cls(hack=cfg.ratio_hack, grow=cfg.ratio_grow, weaken=cfg.ratio_weaken)


@dataclass(frozen=True, slots=True)
class Command:
    kind: TaskKind
    src: str
    ram: float
    targeted: bool


class CommandSet:
    """
    Worker scripts of the engine, keyed by task kind.

    Script identity on the host is ``scripts_dir + src``; that full path is what
    ``ps`` reports and what accounting uses to recognise the engine's own
    processes.
    """

    def __init__(self, commands: Iterable[Command], scripts_dir: str = "c2c/actions/") -> None:
        self.scripts_dir = scripts_dir
        self._by_kind: Dict[TaskKind, Command] = {c.kind: c for c in commands}
        missing = [k for k in TaskKind if k not in self._by_kind]
        if missing:
            raise ValueError(f"missing commands for: {', '.join(k.value for k in missing)}")
        self._by_path: Dict[str, TaskKind] = {}
        for c in self._by_kind.values():
            path = self.path(c.kind)
            if path in self._by_path:
                raise ValueError(f"script {path} is mapped to more than one task kind")
            self._by_path[path] = c.kind

    def __getitem__(self, kind: TaskKind) -> Command:
        return self._by_kind[kind]

    def __iter__(self):
        return iter(self._by_kind.values())

    def path(self, kind: TaskKind) -> str:
        return self.scripts_dir + self._by_kind[kind].src

    def paths(self) -> Tuple[str, ...]:
        return tuple(self.path(k) for k in TaskKind)

    def kind_of(self, filename: str) -> Optional[TaskKind]:
        return self._by_path.get(filename)

    def is_engine_script(self, filename: str) -> bool:
        return filename in self._by_path

    def cost(self, host: HostAPI, kind: TaskKind) -> float:
        """Per-thread RAM of a worker script, as the host reports it."""
        try:
            ram = float(host.get_script_ram(self.path(kind)))
        except HostError as e:
            logger.debug("[commands] script ram query failed for %s: %s", kind.value, e)
            ram = 0.0
        return ram if ram > 0 else float(self._by_kind[kind].ram)

    def costs(self, host: HostAPI) -> Dict[TaskKind, float]:
        return {k: self.cost(host, k) for k in TaskKind}

    @classmethod
    def from_config(cls, cfg: Config) -> "CommandSet":
        return cls(
            [
                Command(TaskKind.HACK, "hack.js", cfg.ram_hack, True),
                Command(TaskKind.GROW, "grow.js", cfg.ram_grow, True),
                Command(TaskKind.WEAKEN, "weaken.js", cfg.ram_weaken, True),
                Command(TaskKind.DDOS, "ddos.js", cfg.ram_ddos, True),
                Command(TaskKind.SHARE, "share_ram.js", cfg.ram_share, False),
            ],
            scripts_dir=cfg.scripts_dir,
        )


def parse_fallback_order(names: Iterable[str]) -> Tuple[TaskKind, ...]:
    """Turn ('grow', 'weaken', ...) into hack/grow/weaken kinds, dropping unknowns and repeats."""
    out = []
    for n in names:
        try:
            kind = TaskKind(str(n).strip().lower())
        except ValueError:
            logger.warning("[commands] ignoring unknown fallback task kind %r", n)
            continue
        if kind in HGW and kind not in out:
            out.append(kind)
    return tuple(out) or (TaskKind.GROW, TaskKind.WEAKEN, TaskKind.HACK)
