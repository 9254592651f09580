from __future__ import annotations

from typing import Annotated, Dict, List, Mapping, Optional, Set

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    StringConstraints,
    field_validator,
)

from .commands import HGW, Goal, TaskKind

HostStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=256)]

# Every persisted snapshot must carry these keys; anything missing means the
# snapshot came from somewhere else (or got truncated) and is not trusted.
REQUIRED_STATE_KEYS = (
    "goal",
    "targets",
    "allocations",
    "node_lists",
    "untargeted",
    "reserved_on_home",
)


# --------------------------------------------------------------------------- #
# Target descriptors (wire format of the targets channel)
# --------------------------------------------------------------------------- #


class MoneyData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max: float = 0.0
    current: float = 0.0


class SecurityData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    min: float = 0.0
    base: float = 0.0
    current: float = 0.0


class TargetData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    money: MoneyData = Field(default_factory=MoneyData)
    security: SecurityData = Field(default_factory=SecurityData)
    growth: float = 0.0
    time: float = Field(0.0, description="Hack time in milliseconds.")
    chance: float = 0.0


class TargetDescriptor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hostname: HostStr
    score: float = 0.0
    data: Optional[TargetData] = None

    @property
    def value_per_time(self) -> float:
        """Money ceiling per millisecond of hack time; 0 when unknown."""
        d = self.data
        if d is None or d.time <= 0 or d.money.max <= 0:
            return 0.0
        return d.money.max / d.time


# --------------------------------------------------------------------------- #
# Thread counts
# --------------------------------------------------------------------------- #


class TaskAllocation(BaseModel):
    """Thread counts per task kind. Values are never negative."""

    model_config = ConfigDict(extra="ignore")

    hack: NonNegativeInt = 0
    grow: NonNegativeInt = 0
    weaken: NonNegativeInt = 0
    ddos: NonNegativeInt = 0
    share: NonNegativeInt = 0

    @classmethod
    def single(cls, kind: TaskKind, threads: int) -> "TaskAllocation":
        return cls(**{kind.value: max(0, int(threads))})

    def get(self, kind: TaskKind) -> int:
        return int(getattr(self, kind.value))

    def with_count(self, kind: TaskKind, threads: int) -> "TaskAllocation":
        return self.model_copy(update={kind.value: max(0, int(threads))})

    def plus(self, other: "TaskAllocation") -> "TaskAllocation":
        return TaskAllocation(**{k.value: self.get(k) + other.get(k) for k in TaskKind})

    def minus(self, other: "TaskAllocation") -> "TaskAllocation":
        """Subtract per kind, floored at zero."""
        return TaskAllocation(**{k.value: max(0, self.get(k) - other.get(k)) for k in TaskKind})

    def hgw_total(self) -> int:
        return sum(self.get(k) for k in HGW)

    def total(self) -> int:
        return sum(self.get(k) for k in TaskKind)

    def is_empty(self) -> bool:
        return self.total() == 0

    def capacity(self, costs: Mapping[TaskKind, float]) -> float:
        """RAM implied by these thread counts."""
        return sum(self.get(k) * float(costs.get(k, 0.0)) for k in TaskKind)

    def kinds(self) -> List[TaskKind]:
        return [k for k in TaskKind if self.get(k) > 0]


class TargetAllocation(BaseModel):
    """
    What the engine has running against one target.

    ``tasks`` is the running total for the target; ``nodes`` breaks it down
    by the node the threads run on.
    """

    model_config = ConfigDict(extra="ignore")

    hostname: HostStr
    tasks: TaskAllocation = Field(default_factory=TaskAllocation)
    nodes: Dict[str, TaskAllocation] = Field(default_factory=dict)
    data: Optional[TargetData] = None


def _empty_node_lists() -> Dict[TaskKind, List[str]]:
    return {k: [] for k in TaskKind}


# --------------------------------------------------------------------------- #
# Engine state
# --------------------------------------------------------------------------- #


class EngineState(BaseModel):
    """
    Everything the scheduler needs to resume after a restart.

    The scheduler loop is the only writer. Components return deltas; the loop
    applies them through the methods below so that ``node_lists`` and the
    per-node breakdowns in ``allocations`` always agree.
    """

    model_config = ConfigDict(extra="ignore")

    goal: Optional[Goal] = None
    targets: List[TargetDescriptor] = Field(default_factory=list)
    allocations: Dict[str, TargetAllocation] = Field(default_factory=dict)
    node_lists: Dict[TaskKind, List[str]] = Field(default_factory=_empty_node_lists)
    untargeted: Dict[str, TaskAllocation] = Field(default_factory=dict)
    reserved_on_home: float = Field(0.0, ge=0.0)

    @field_validator("node_lists")
    @classmethod
    def _fill_node_lists(cls, v: Dict[TaskKind, List[str]]) -> Dict[TaskKind, List[str]]:
        out = _empty_node_lists()
        for kind, nodes in v.items():
            seen: List[str] = []
            for n in nodes:
                if n not in seen:
                    seen.append(n)
            out[kind] = seen
        return out

    # ---------------- Queries ----------------

    def target_hostnames(self) -> Set[str]:
        return {t.hostname for t in self.targets}

    def find_target(self, hostname: str) -> Optional[TargetDescriptor]:
        for t in self.targets:
            if t.hostname == hostname:
                return t
        return None

    def is_assigned(self, node: str) -> bool:
        return any(node in nodes for nodes in self.node_lists.values())

    def node_allocation(self, node: str) -> TaskAllocation:
        """Everything recorded for ``node`` across targets (and untargeted work)."""
        acc = self.untargeted.get(node, TaskAllocation())
        for ta in self.allocations.values():
            per = ta.nodes.get(node)
            if per is not None:
                acc = acc.plus(per)
        return acc

    def totals(self) -> TaskAllocation:
        acc = TaskAllocation()
        for ta in self.allocations.values():
            acc = acc.plus(ta.tasks)
        for per in self.untargeted.values():
            acc = acc.plus(per)
        return acc

    # ---------------- Mutations (scheduler loop only) ----------------

    def reset_allocations(self) -> None:
        """Abandon all bookkeeping; every current target starts at zero."""
        self.allocations = {
            t.hostname: TargetAllocation(hostname=t.hostname, data=t.data) for t in self.targets
        }
        self.node_lists = _empty_node_lists()
        self.untargeted = {}

    def _allocation_for(self, target: str) -> TargetAllocation:
        ta = self.allocations.get(target)
        if ta is None:
            desc = self.find_target(target)
            ta = TargetAllocation(hostname=target, data=desc.data if desc else None)
            self.allocations[target] = ta
        return ta

    def record_launch(self, node: str, target: Optional[str], delta: TaskAllocation) -> None:
        """Add freshly launched threads on ``node`` (against ``target``, or untargeted)."""
        if delta.is_empty():
            return
        if target is None:
            self.untargeted[node] = self.untargeted.get(node, TaskAllocation()).plus(delta)
        else:
            ta = self._allocation_for(target)
            ta.nodes[node] = ta.nodes.get(node, TaskAllocation()).plus(delta)
            ta.tasks = ta.tasks.plus(delta)
        self.reindex_node(node)

    def release(self, node: str, target: Optional[str], kind: TaskKind, threads: int) -> None:
        """Account for killed threads. Counters are floored at zero."""
        threads = max(0, int(threads))
        if threads == 0:
            return
        removed = TaskAllocation.single(kind, threads)
        if target is not None and target in self.allocations:
            ta = self.allocations[target]
            ta.tasks = ta.tasks.minus(removed)
            per = ta.nodes.get(node)
            if per is not None:
                per = per.minus(removed)
                if per.is_empty():
                    ta.nodes.pop(node, None)
                else:
                    ta.nodes[node] = per
        elif node in self.untargeted:
            per = self.untargeted[node].minus(removed)
            if per.is_empty():
                self.untargeted.pop(node, None)
            else:
                self.untargeted[node] = per
        self.reindex_node(node)

    def forget_node(self, node: str) -> None:
        """Drop every thread recorded on ``node`` (its engine processes were killed)."""
        for ta in self.allocations.values():
            per = ta.nodes.pop(node, None)
            if per is not None:
                ta.tasks = ta.tasks.minus(per)
        self.untargeted.pop(node, None)
        self.reindex_node(node)

    def reindex_node(self, node: str) -> None:
        have = self.node_allocation(node)
        for kind in TaskKind:
            nodes = self.node_lists.setdefault(kind, [])
            if have.get(kind) > 0:
                if node not in nodes:
                    nodes.append(node)
            elif node in nodes:
                nodes.remove(node)

    # ---------------- Diagnostics ----------------

    def check_consistency(self) -> List[str]:
        """Return a list of problems; empty when node lists match the breakdowns."""
        problems: List[str] = []
        nodes: Set[str] = set(self.untargeted)
        for ta in self.allocations.values():
            nodes.update(ta.nodes)
        for listed in self.node_lists.values():
            nodes.update(listed)
        for node in sorted(nodes):
            have = self.node_allocation(node)
            for kind in TaskKind:
                listed = node in self.node_lists.get(kind, [])
                if listed != (have.get(kind) > 0):
                    problems.append(
                        f"{node}: {kind.value} listed={listed} threads={have.get(kind)}"
                    )
        return problems
