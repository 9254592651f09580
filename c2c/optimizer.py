from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple

from .allocator import ThreadAllocator
from .commands import HGW, TaskKind, TaskMixRatios
from .host import ProcessInfo
from .models import TaskAllocation
from .utils import format_gb

logger = logging.getLogger("c2c.optimizer")


class IncrementalOptimizer:
    """
    Tops up a node that already runs hack/grow/weaken workers.

    Existing workers are never touched. For every target seen on the node the
    most under-represented task kind gets as many extra threads as the node's
    idle capacity allows, so the mix drifts toward the target ratios as
    capacity frees up.
    """

    def __init__(self, allocator: ThreadAllocator, *, min_deficit_threads: float = 1.0) -> None:
        self.allocator = allocator
        self.commands = allocator.commands
        self.ratios: TaskMixRatios = allocator.ratios
        self.min_deficit_threads = max(0.0, float(min_deficit_threads))

    def observe(self, processes: Iterable[ProcessInfo]) -> Dict[str, TaskAllocation]:
        """Per-target hack/grow/weaken totals from the live process table."""
        current: Dict[str, TaskAllocation] = {}
        for proc in processes:
            kind = self.commands.kind_of(proc.filename)
            if kind not in HGW:
                continue
            target = proc.target
            if target is None:
                continue
            have = current.get(target, TaskAllocation())
            current[target] = have.with_count(kind, have.get(kind) + int(proc.threads))
        return current

    def most_deficient(self, current: TaskAllocation) -> Optional[Tuple[TaskKind, float]]:
        """
        The kind furthest below its ratio, as ``(kind, deficit)``, or None.

        A kind only counts as deficient when it is at least
        ``min_deficit_threads`` whole threads short of its share; rounding from
        the initial allocation is not a deficit. Ties go to the earlier kind in
        hack, grow, weaken order.
        """
        total = current.hgw_total()
        if total <= 0:
            return None
        best: Optional[Tuple[TaskKind, float]] = None
        for kind in HGW:
            want = self.ratios.get(kind)
            have = current.get(kind)
            deficit = want - have / total
            if deficit <= 0:
                continue
            if want * total - have < self.min_deficit_threads:
                continue
            if best is None or deficit > best[1]:
                best = (kind, deficit)
        return best

    def optimize(
        self,
        node: str,
        processes: Iterable[ProcessInfo],
        capacity: float,
    ) -> Dict[str, TaskAllocation]:
        """
        Launch extra threads on ``node`` for each deficient target.

        ``capacity`` is the node's idle RAM; it is split evenly between the
        targets that need a top-up. Returns only the threads launched now.
        """
        current = self.observe(processes)
        plan = []
        for target, have in current.items():
            pick = self.most_deficient(have)
            if pick is not None:
                plan.append((target, pick[0]))

        deltas: Dict[str, TaskAllocation] = {}
        if not plan:
            logger.debug("[optimize] %s | mix within tolerance for %d target(s)", node, len(current))
            return deltas

        costs = self.allocator.costs()
        per_target = capacity / len(plan)
        for target, kind in plan:
            cost = costs[kind]
            threads = int(per_target // cost) if cost > 0 else 0
            if threads <= 0:
                logger.debug(
                    "[optimize] %s | %s short on %s but only %s idle",
                    node, target, kind.value, format_gb(per_target),
                )
                continue
            got = self.allocator.launch(node, kind, threads, target)
            if got > 0:
                deltas[target] = deltas.get(target, TaskAllocation()).with_count(kind, got)
                logger.info("[optimize] %s | +%s[%d] @%s", node, kind.value, got, target)
        return deltas
