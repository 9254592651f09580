from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat

from c2c.host import Arg, HostError, ProcessInfo, ServerSnapshot

logger = logging.getLogger(__name__)

_RAM_EPS = 1e-9


# ---------------------------------------------------------------------------
# Network file schema
# ---------------------------------------------------------------------------


class NodeSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_ram: NonNegativeFloat = 0.0
    root: bool = True
    neighbours: List[str] = Field(default_factory=list)
    money_max: NonNegativeFloat = 0.0
    money_available: NonNegativeFloat = 0.0
    security_min: NonNegativeFloat = 1.0
    security_base: NonNegativeFloat = 1.0
    security_current: NonNegativeFloat = 1.0
    growth: NonNegativeFloat = 0.0
    hack_time: NonNegativeFloat = 0.0
    hack_chance: NonNegativeFloat = 0.0
    required_hacking_level: int = 0
    purchased: bool = False


class NetworkSpec(BaseModel):
    """
    {"home": "home", "hacking_level": 50,
     "scripts": {"c2c/actions/hack.js": 1.7, ...},
     "nodes": {"home": {"max_ram": 64, "neighbours": ["n00dles"]}, ...}}
    """

    model_config = ConfigDict(extra="ignore")

    home: str = "home"
    hacking_level: int = 1
    scripts: Dict[str, NonNegativeFloat] = Field(default_factory=dict)
    nodes: Dict[str, NodeSpec] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------


@dataclass
class _Node:
    hostname: str
    spec: NodeSpec
    neighbours: List[str] = field(default_factory=list)
    scripts: Set[str] = field(default_factory=set)


@dataclass
class _Process:
    pid: int
    node: str
    filename: str
    threads: int
    args: tuple
    ram: float


class SimulatedHost:
    """
    In-memory stand-in for the game host.

    - Links are symmetric: listing B as a neighbour of A also links A to B.
    - ``exec`` launches only scripts present on the node and only when the
      threads fit in the node's free RAM; otherwise it returns pid 0.
    - Scripts are always present on home; ``scp`` copies them elsewhere.
    - ``add_process`` models RAM held by someone else (the player).
    """

    def __init__(
        self,
        nodes: Mapping[str, NodeSpec],
        *,
        scripts: Optional[Mapping[str, float]] = None,
        home: str = "home",
        hacking_level: int = 1,
    ) -> None:
        self.home = home
        self.hacking_level = int(hacking_level)
        self.script_ram: Dict[str, float] = dict(scripts or {})
        self._nodes: Dict[str, _Node] = {}
        self._procs: Dict[int, _Process] = {}
        self._pids = itertools.count(1)

        for name, spec in nodes.items():
            self.add_node(name, spec)
        if home not in self._nodes:
            self.add_node(home, NodeSpec())
        for name, spec in nodes.items():
            for n in spec.neighbours:
                self.connect(name, n)

    # ---------------- Construction ----------------

    @classmethod
    def from_dict(cls, data: Mapping) -> "SimulatedHost":
        spec = NetworkSpec.model_validate(dict(data))
        return cls(spec.nodes, scripts=spec.scripts, home=spec.home, hacking_level=spec.hacking_level)

    @classmethod
    def load_network(cls, path: Path) -> "SimulatedHost":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        host = cls.from_dict(raw)
        logger.info("[sim] loaded %d node(s) from %s", len(host._nodes), path)
        return host

    def add_node(self, name: str, spec: Optional[NodeSpec] = None, *, link_to: Optional[str] = None) -> None:
        if name not in self._nodes:
            self._nodes[name] = _Node(hostname=name, spec=spec or NodeSpec())
        elif spec is not None:
            self._nodes[name].spec = spec
        if link_to is not None:
            self.connect(link_to, name)

    def connect(self, a: str, b: str) -> None:
        if a not in self._nodes:
            self.add_node(a)
        if b not in self._nodes:
            self.add_node(b)
        if b not in self._nodes[a].neighbours:
            self._nodes[a].neighbours.append(b)
        if a not in self._nodes[b].neighbours:
            self._nodes[b].neighbours.append(a)

    def add_process(self, node: str, filename: str, threads: int, *args: Arg, ram: Optional[float] = None) -> int:
        """Start a process without any checks. ``ram`` is the total footprint."""
        self._node(node)
        if ram is None:
            ram = threads * self.script_ram.get(filename, 0.0)
        pid = next(self._pids)
        self._procs[pid] = _Process(pid, node, filename, int(threads), tuple(args), float(ram))
        return pid

    # ---------------- Internals ----------------

    def _node(self, node: str) -> _Node:
        try:
            return self._nodes[node]
        except KeyError:
            raise HostError(f"unknown node {node!r}") from None

    def _has_script(self, node: str, script: str) -> bool:
        if node == self.home:
            return script in self.script_ram
        return script in self._node(node).scripts

    # ---------------- Host API ----------------

    def scan(self, node: str) -> List[str]:
        return list(self._node(node).neighbours)

    def has_root_access(self, node: str) -> bool:
        return bool(self._node(node).spec.root)

    def get_max_ram(self, node: str) -> float:
        return float(self._node(node).spec.max_ram)

    def get_used_ram(self, node: str) -> float:
        self._node(node)
        return sum(p.ram for p in self._procs.values() if p.node == node)

    def get_script_ram(self, script: str) -> float:
        return float(self.script_ram.get(script, 0.0))

    def ps(self, node: str) -> List[ProcessInfo]:
        self._node(node)
        return [
            ProcessInfo(pid=p.pid, filename=p.filename, threads=p.threads, args=p.args)
            for p in self._procs.values()
            if p.node == node
        ]

    def exec(self, script: str, node: str, threads: int, *args: Arg) -> int:
        n = self._node(node)
        if threads < 1 or not n.spec.root:
            return 0
        if not self._has_script(node, script):
            logger.debug("[sim] %s: %s not present", node, script)
            return 0
        ram = threads * self.get_script_ram(script)
        free = self.get_max_ram(node) - self.get_used_ram(node)
        if ram > free + _RAM_EPS:
            logger.debug("[sim] %s: %s[%d] needs %.2fGB, %.2fGB free", node, script, threads, ram, free)
            return 0
        return self.add_process(node, script, threads, *args, ram=ram)

    def kill(self, pid: int) -> bool:
        return self._procs.pop(int(pid), None) is not None

    def script_kill(self, script: str, node: str) -> bool:
        self._node(node)
        doomed = [pid for pid, p in self._procs.items() if p.node == node and p.filename == script]
        for pid in doomed:
            del self._procs[pid]
        return bool(doomed)

    def scp(self, scripts: Sequence[str], node: str, source: str) -> bool:
        dst = self._node(node)
        self._node(source)
        ok = True
        for s in scripts:
            if self._has_script(source, s):
                dst.scripts.add(s)
            else:
                ok = False
        return ok

    def get_server(self, node: str) -> ServerSnapshot:
        s = self._node(node).spec
        return ServerSnapshot(
            hostname=node,
            money_max=s.money_max,
            money_available=s.money_available,
            security_min=s.security_min,
            security_base=s.security_base,
            security_current=s.security_current,
            growth=s.growth,
            hack_time=s.hack_time,
            hack_chance=s.hack_chance,
            required_hacking_level=s.required_hacking_level,
            purchased=s.purchased,
        )

    def get_hacking_level(self) -> int:
        return self.hacking_level
