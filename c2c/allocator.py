from __future__ import annotations

import logging
import math
import random
from dataclasses import asdict, dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .commands import HGW, CommandSet, TaskKind, TaskMixRatios, parse_fallback_order
from .config import Config
from .host import HostAPI, HostError
from .models import TargetDescriptor, TaskAllocation
from .utils import format_gb, format_threads, weighted_choice

# --------------------------------------------------------------------
# Module logger
# --------------------------------------------------------------------
_logger = logging.getLogger("c2c.allocator")
if not _logger.handlers:
    _logger.addHandler(logging.NullHandler())

# Guards float noise such as 20 * 0.05 == 1.0000000000000002.
_EPS = 1e-9


def _floor(x: float) -> int:
    return int(math.floor(x + _EPS))


def _ceil(x: float) -> int:
    return int(math.ceil(x - _EPS))


# -----------------------------
# Config
# -----------------------------
@dataclass(frozen=True)
class AllocatorConfig:
    """
    Policy knobs for turning capacity into threads.

    - fallback_order:          Kinds tried, in order, when not even one unit set fits.
                               The first kind with at least one thread that fits takes
                               all of the capacity.
    - start_delay_min/max_ms:  Random per-launch delay handed to workers so cycles
                               do not finish in lockstep.
    - multi_target:            Allow one node to work several targets.
    - max_targets_per_node:    Upper bound for multi-target nodes.
    - multi_target_set_factor: A target gets at least ceil(1/ratio.hack) * factor unit
                               sets, so each target still receives a hack thread.
    """
    home: str = "home"
    start_delay_min_ms: int = 0
    start_delay_max_ms: int = 500
    fallback_order: Tuple[TaskKind, ...] = (TaskKind.GROW, TaskKind.WEAKEN, TaskKind.HACK)
    multi_target: bool = True
    max_targets_per_node: int = 4
    multi_target_set_factor: int = 2

    @classmethod
    def from_config(cls, cfg: Config) -> "AllocatorConfig":
        return cls(
            home=cfg.home_hostname,
            start_delay_min_ms=cfg.start_delay_min_ms,
            start_delay_max_ms=cfg.start_delay_max_ms,
            fallback_order=parse_fallback_order(cfg.fallback_order),
            multi_target=cfg.multi_target,
            max_targets_per_node=cfg.max_targets_per_node,
            multi_target_set_factor=cfg.multi_target_set_factor,
        )


# -----------------------------
# Public API
# -----------------------------
class ThreadAllocator:
    """
    Computes and launches hack/grow/weaken thread counts for one node.

    ``plan`` is side-effect free. ``allocate`` clears the node's engine
    workers, copies the scripts over and launches the planned threads.
    """

    def __init__(
        self,
        host: HostAPI,
        commands: CommandSet,
        ratios: TaskMixRatios,
        cfg: Optional[AllocatorConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.host = host
        self.commands = commands
        self.ratios = ratios
        self.cfg = cfg or AllocatorConfig()
        self.rng = rng or random.Random()
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("[alloc] init: ratios=%s cfg=%s", self.ratios, asdict(self.cfg))

    # ---- costs ----

    def costs(self) -> Dict[TaskKind, float]:
        return self.commands.costs(self.host)

    def unit_set_cost(self, costs: Optional[Mapping[TaskKind, float]] = None) -> float:
        return self.ratios.unit_set_cost(costs or self.costs())

    # ---- 1) pure planning ----

    def plan(self, capacity: float, costs: Optional[Mapping[TaskKind, float]] = None) -> TaskAllocation:
        """
        Threads that fit in ``capacity`` GB.

        Full unit sets split by the task mix (grow rounded up, but never past the
        budget). Below one unit set, the whole budget goes to the first kind in
        ``fallback_order`` that fits at least one thread.
        """
        costs = dict(costs or self.costs())
        if capacity <= 0:
            return TaskAllocation()

        unit = self.ratios.unit_set_cost(costs)
        sets = _floor(capacity / unit) if unit > 0 else 0

        if sets >= 1:
            hack = _floor(sets * self.ratios.hack)
            weaken = _floor(sets * self.ratios.weaken)
            grow = _ceil(sets * self.ratios.grow)
            room = capacity - hack * costs[TaskKind.HACK] - weaken * costs[TaskKind.WEAKEN]
            grow = min(grow, max(0, _floor(room / costs[TaskKind.GROW])))
            out = TaskAllocation(hack=hack, grow=grow, weaken=weaken)
            if _logger.isEnabledFor(logging.DEBUG):
                _logger.debug(
                    "[alloc] plan: capacity=%.2f unit=%.4f sets=%d -> h=%d g=%d w=%d",
                    capacity, unit, sets, hack, grow, weaken,
                )
            return out

        for kind in self.cfg.fallback_order:
            cost = costs.get(kind, 0.0)
            if cost <= 0:
                continue
            n = _floor(capacity / cost)
            if n >= 1:
                if _logger.isEnabledFor(logging.DEBUG):
                    _logger.debug(
                        "[alloc] plan: capacity=%.2f below one unit set (%.4f) -> %s=%d",
                        capacity, unit, kind.value, n,
                    )
                return TaskAllocation.single(kind, n)
        return TaskAllocation()

    # ---- 2) side effects ----

    def prepare_node(self, node: str) -> None:
        """Kill every engine worker on ``node`` and (re)copy the scripts from home."""
        for path in self.commands.paths():
            try:
                self.host.script_kill(path, node)
            except HostError as e:
                _logger.warning("[alloc] %s | failed to kill %s: %s", node, path, e)
        if node != self.cfg.home:
            try:
                if not self.host.scp(self.commands.paths(), node, self.cfg.home):
                    _logger.warning("[alloc] %s | script copy reported failure", node)
            except HostError as e:
                _logger.warning("[alloc] %s | script copy failed: %s", node, e)

    def start_delay_ms(self) -> int:
        lo = int(self.cfg.start_delay_min_ms)
        hi = int(self.cfg.start_delay_max_ms)
        if hi < lo:
            lo, hi = hi, lo
        return self.rng.randint(lo, hi)

    def launch(self, node: str, kind: TaskKind, threads: int, target: Optional[str]) -> int:
        """Start one worker; returns the thread count actually launched (0 on failure)."""
        if threads <= 0:
            return 0
        cmd = self.commands[kind]
        script = self.commands.path(kind)
        args: Tuple = ()
        if cmd.targeted:
            if not target:
                _logger.warning("[alloc] %s | %s needs a target, none given", node, kind.value)
                return 0
            args = (target, self.start_delay_ms())
        try:
            pid = self.host.exec(script, node, int(threads), *args)
        except HostError as e:
            _logger.warning("[alloc] %s | launch %s[%d] failed: %s", node, kind.value, threads, e)
            return 0
        if not pid:
            _logger.warning("[alloc] %s | launch %s[%d] rejected by host", node, kind.value, threads)
            return 0
        return int(threads)

    def allocate(
        self,
        node: str,
        target: str,
        capacity: float,
        *,
        additional: bool = False,
    ) -> TaskAllocation:
        """
        Plan ``capacity`` for ``target`` and launch it on ``node``.

        Unless ``additional`` is set, the node's engine workers are cleared first.
        Returns what was really launched; never raises.
        """
        if not additional:
            self.prepare_node(node)

        planned = self.plan(capacity)
        launched = TaskAllocation()
        for kind in HGW:
            n = self.launch(node, kind, planned.get(kind), target)
            launched = launched.with_count(kind, n)

        _logger.info(
            "[alloc] %s | g[%s] w[%s] h[%s] @%s (%s)",
            node,
            format_threads(launched.grow),
            format_threads(launched.weaken),
            format_threads(launched.hack),
            target,
            format_gb(capacity),
        )
        return launched

    def launch_single(self, node: str, kind: TaskKind, threads: int, target: Optional[str] = None) -> int:
        """ddos/share deployment: clear the node, then one worker with all threads."""
        self.prepare_node(node)
        return self.launch(node, kind, threads, target if self.commands[kind].targeted else None)

    # ---- 3) targets per node ----

    def min_ram_per_target(self, costs: Optional[Mapping[TaskKind, float]] = None) -> float:
        if self.ratios.hack <= 0:
            return math.inf
        sets = math.ceil(1.0 / self.ratios.hack - _EPS) * max(1, int(self.cfg.multi_target_set_factor))
        return sets * self.unit_set_cost(costs)

    def target_slots(self, capacity: float, costs: Optional[Mapping[TaskKind, float]] = None) -> int:
        if not self.cfg.multi_target:
            return 1
        per = self.min_ram_per_target(costs)
        if not math.isfinite(per) or per <= 0:
            return 1
        return max(1, min(int(self.cfg.max_targets_per_node), _floor(capacity / per)))

    def select_targets(self, targets: Sequence[TargetDescriptor], capacity: float) -> List[TargetDescriptor]:
        """
        Weighted random picks (with replacement), one per target slot.

        Weight is money per unit of hack time; targets without data fall back to
        their score, and all-zero weights mean a uniform pick.
        """
        if not targets:
            return []
        weights = [t.value_per_time for t in targets]
        if not any(w > 0 for w in weights):
            weights = [t.score for t in targets]
        picks: List[TargetDescriptor] = []
        for _ in range(self.target_slots(capacity)):
            t = weighted_choice(targets, weights, self.rng)
            if t is not None:
                picks.append(t)
        return picks

    def allocate_many(
        self,
        node: str,
        targets: Sequence[TargetDescriptor],
        capacity: float,
    ) -> Dict[str, TaskAllocation]:
        """
        Full allocation of ``node`` split evenly across ``targets``.

        The first target clears the node; the rest are launched alongside it.
        Picks of the same target are merged in the result.
        """
        out: Dict[str, TaskAllocation] = {}
        if not targets or capacity <= 0:
            return out
        share = capacity / len(targets)
        for i, t in enumerate(targets):
            got = self.allocate(node, t.hostname, share, additional=i > 0)
            out[t.hostname] = out.get(t.hostname, TaskAllocation()).plus(got)
        return out
