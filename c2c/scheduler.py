from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set

from components.network import walk_network
from extensions.checkpoint import StateCheckpoint
from extensions.logging import LoggingExtension, notify
from extensions.ports import GOAL_PORT, HOME_RESERVE_PORT, TARGET_PORT, PortStore
from extensions.stats_analyzer import render_allocation_table, render_assignment

from .accounting import free_capacity, unused_capacity
from .allocator import AllocatorConfig, ThreadAllocator
from .commands import HGW, CommandSet, Goal, TaskKind, TaskMixRatios
from .config import Config
from .host import HostAPI, HostError
from .models import EngineState, TaskAllocation
from .optimizer import IncrementalOptimizer
from .registry import parse_goal, parse_reservation, parse_targets, set_goal, set_reservation, set_targets
from .reservation import HomeReservationEnforcer, ReservationReport
from .utils import format_gb

logger = logging.getLogger("c2c.scheduler")


@dataclass(slots=True)
class PassResult:
    """
    Outcome of one scheduler pass.

    - status:   "ok" after a full walk, "waiting" when goal or targets are missing.
    - missing:  what the waiting pass is waiting for ("goal", "targets").
    - visited:  nodes reached by the walk (useless and unrooted ones included).
    - launched: threads started during this pass, summed over nodes.
    """

    status: str = "ok"
    missing: List[str] = field(default_factory=list)
    visited: List[str] = field(default_factory=list)
    launched: TaskAllocation = field(default_factory=TaskAllocation)
    new_useless: List[str] = field(default_factory=list)
    reservation: Optional[ReservationReport] = None
    elapsed_sec: float = 0.0


NodeHandler = Callable[[str, PassResult], Awaitable[None]]


class C2CScheduler:
    """
    Main control loop.

    Every pass reads the signal ports, makes sure the home reservation holds,
    walks the whole network breadth-first and hands each usable node to the
    handler for the current goal, then checkpoints the state. The scheduler is
    the only writer of ``state``.
    """

    def __init__(
        self,
        host: HostAPI,
        ports: PortStore,
        cfg: Config,
        *,
        commands: Optional[CommandSet] = None,
        ratios: Optional[TaskMixRatios] = None,
        rng: Optional[random.Random] = None,
        checkpoint: Optional[StateCheckpoint] = None,
    ) -> None:
        self.host = host
        self.ports = ports
        self.cfg = cfg
        self.home = cfg.home_hostname
        self.commands = commands or CommandSet.from_config(cfg)
        self.ratios = ratios or TaskMixRatios.from_config(cfg)
        self.rng = rng or random.Random()
        self.allocator = ThreadAllocator(
            host, self.commands, self.ratios, AllocatorConfig.from_config(cfg), rng=self.rng,
        )
        self.optimizer = IncrementalOptimizer(self.allocator, min_deficit_threads=cfg.min_deficit_threads)
        self.enforcer = HomeReservationEnforcer(host, self.commands, home=self.home)
        self.checkpoint = checkpoint or StateCheckpoint(ports)

        self.state: EngineState = self.checkpoint.load()
        # Nodes that can never hold a worker; rebuilt from scratch on restart.
        self.useless: Set[str] = set(cfg.ignore_nodes)

        self._handlers: Dict[Goal, NodeHandler] = {
            Goal.HACK: self._handle_hack,
            Goal.DDOS: self._handle_ddos,
            Goal.SHARE: self._handle_share,
        }
        self.passes = 0

    # ---------------- Signals ----------------

    def ingest_signals(self) -> bool:
        """Apply goal/targets/reservation from the ports. Returns True if anything changed."""
        changed = False
        if set_goal(self.state, parse_goal(self.ports.peek(GOAL_PORT))):
            notify(logger, f"Set goal to {self.state.goal.value}", "success")
            changed = True
        if set_targets(self.state, parse_targets(self.ports.peek(TARGET_PORT))):
            notify(logger, "Set targets to " + ", ".join(t.hostname for t in self.state.targets), "success")
            changed = True
        if set_reservation(self.state, parse_reservation(self.ports.peek(HOME_RESERVE_PORT))):
            notify(logger, f"Set home reserve to {self.state.reserved_on_home:g}GB", "success")
            changed = True
        return changed

    def missing_inputs(self) -> List[str]:
        missing = []
        if self.state.goal is None:
            missing.append("goal")
        if not self.state.targets:
            missing.append("targets")
        return missing

    # ---------------- Pass ----------------

    async def run_pass(self) -> PassResult:
        started = time.monotonic()
        result = PassResult()
        self.passes += 1

        self.ingest_signals()

        missing = self.missing_inputs()
        if missing:
            result.status = "waiting"
            result.missing = missing
            notify(logger, f"No {' and '.join(missing)}, waiting {self.cfg.wait_timeout_sec:g}s")
            result.elapsed_sec = time.monotonic() - started
            return result

        result.reservation = self._enforce_reservation()

        handler = self._handlers[self.state.goal]
        for node in walk_network(self.host, self.home):
            result.visited.append(node)
            if node in self.useless:
                continue
            try:
                if not self.host.has_root_access(node):
                    continue
            except HostError as e:
                logger.warning("[c2c] %s | root check failed: %s", node, e)
                continue

            token = LoggingExtension.set_node_context(node)
            try:
                await self._visit(node, handler, result)
            except HostError as e:
                logger.warning("[c2c] %s | skipped this pass: %s", node, e)
            except Exception:
                logger.exception("[c2c] %s | unexpected error, skipped this pass", node)
            finally:
                LoggingExtension.reset_node_context(token)

            if self.cfg.node_throttle_sec > 0:
                await asyncio.sleep(self.cfg.node_throttle_sec)

        self.checkpoint.save(self.state)

        table = render_allocation_table(self.state)
        for line in table.splitlines():
            logger.info("[c2c] %s", line)

        problems = self.state.check_consistency()
        if problems:
            logger.error("[c2c] node lists out of sync: %s", "; ".join(problems[:5]))

        result.elapsed_sec = time.monotonic() - started
        logger.info(
            "[c2c] pass %d done: %d node(s) visited, %d thread(s) launched, %.2fs",
            self.passes, len(result.visited), result.launched.total(), result.elapsed_sec,
        )
        return result

    async def _visit(self, node: str, handler: NodeHandler, result: PassResult) -> None:
        if self.host.get_max_ram(node) <= 0:
            notify(logger, f"{node} | 0 RAM, skipping")
            self._mark_useless(node, result)
            return
        await handler(node, result)

    def _mark_useless(self, node: str, result: PassResult) -> None:
        if node not in self.useless:
            self.useless.add(node)
            result.new_useless.append(node)

    def _enforce_reservation(self) -> ReservationReport:
        report = self.enforcer.enforce(self.state.reserved_on_home)
        for k in report.killed:
            self.state.release(self.home, k.target, k.kind, k.threads)
        if report:
            notify(
                logger,
                f"Freed {format_gb(report.freed)} on {self.home} ({len(report.killed)} worker(s) killed)",
                "warning",
            )
        return report

    # ---------------- Goal handlers ----------------

    def _capacity(self, node: str) -> float:
        return free_capacity(
            self.host, node, self.commands, self.state.reserved_on_home, home=self.home,
        )

    async def _handle_single(self, node: str, result: PassResult, kind: TaskKind) -> None:
        if node in self.state.node_lists[kind]:
            return
        cost = self.commands.cost(self.host, kind)
        threads = int(self._capacity(node) // cost) if cost > 0 else 0
        if threads <= 0:
            self._mark_useless(node, result)
            return

        target: Optional[str] = None
        if self.commands[kind].targeted:
            pick = self.state.targets[self.rng.randrange(len(self.state.targets))]
            target = pick.hostname

        # A single-goal node runs nothing else once prepared.
        self.state.forget_node(node)
        got = self.allocator.launch_single(node, kind, threads, target)
        if got <= 0:
            return
        delta = TaskAllocation.single(kind, got)
        self.state.record_launch(node, target, delta)
        result.launched = result.launched.plus(delta)
        suffix = f" @ {target}" if target else ""
        notify(logger, f"{node} | {kind.value}[{got}]{suffix}", "success")

    async def _handle_ddos(self, node: str, result: PassResult) -> None:
        await self._handle_single(node, result, TaskKind.DDOS)

    async def _handle_share(self, node: str, result: PassResult) -> None:
        await self._handle_single(node, result, TaskKind.SHARE)

    async def _handle_hack(self, node: str, result: PassResult) -> None:
        processes = self.host.ps(node)
        running_hgw = [p for p in processes if self.commands.kind_of(p.filename) in HGW]
        assigned = self.state.is_assigned(node)

        if not assigned or not running_hgw:
            capacity = self._capacity(node)
            self.state.forget_node(node)
            picks = self.allocator.select_targets(self.state.targets, capacity)
            added = self.allocator.allocate_many(node, picks, capacity)
            # No room right now; the node is tried again next pass.
            if all(a.is_empty() for a in added.values()):
                return
            title = "Add node to botnet"
        else:
            capacity = unused_capacity(self.host, node, self.state.reserved_on_home, home=self.home)
            added = self.optimizer.optimize(node, processes, capacity)
            if not added:
                return
            title = "Optimized node"

        for target, delta in added.items():
            self.state.record_launch(node, target, delta)
            result.launched = result.launched.plus(delta)

        table = render_assignment(added, f"{title} {node}")
        for line in table.splitlines():
            logger.info("[c2c] %s", line)

    # ---------------- Loop ----------------

    async def run_forever(self, stop_event: asyncio.Event, *, max_passes: Optional[int] = None) -> int:
        """Repeat passes until ``stop_event`` is set (or ``max_passes`` ran). Returns the pass count."""
        done = 0
        while not stop_event.is_set():
            try:
                result = await self.run_pass()
            except Exception:
                logger.exception("[c2c] pass failed")
                result = PassResult(status="error")
            done += 1
            if max_passes is not None and done >= max_passes:
                break

            delay = self.cfg.wait_timeout_sec if result.status == "waiting" else self.cfg.pass_interval_sec
            if result.status == "ok":
                notify(logger, f"Sleeping for {delay:g}s...")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, delay))
        return done
