from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .commands import CommandSet, TaskKind
from .host import HostAPI, HostError

logger = logging.getLogger("c2c.reservation")


@dataclass(frozen=True, slots=True)
class KilledTask:
    pid: int
    kind: TaskKind
    target: Optional[str]
    threads: int
    ram: float


@dataclass(slots=True)
class ReservationReport:
    """
    Outcome of one enforcement check on home.

    - shortfall: GB missing from the reservation when the check ran (0 if satisfied).
    - freed:     GB released by the kills below.
    - killed:    engine workers terminated, largest footprint first.
    """

    acted: bool = False
    shortfall: float = 0.0
    freed: float = 0.0
    killed: List[KilledTask] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.acted

    @property
    def remaining(self) -> float:
        return max(0.0, self.shortfall - self.freed)


class HomeReservationEnforcer:
    """
    Keeps ``reservation`` GB free on the shared home node.

    When free RAM on home drops below the reservation, the engine's own
    workers there are killed largest first until the shortfall is covered.
    Killing the largest first covers any shortfall with the fewest kills.
    Other processes on home (the player's) are never touched.
    """

    def __init__(self, host: HostAPI, commands: CommandSet, *, home: str = "home") -> None:
        self.host = host
        self.commands = commands
        self.home = home

    def shortfall(self, reservation: float) -> float:
        """GB missing from the reservation right now. Raises HostError."""
        free = float(self.host.get_max_ram(self.home)) - float(self.host.get_used_ram(self.home))
        return max(0.0, float(reservation) - free)

    def enforce(self, reservation: float) -> ReservationReport:
        if reservation <= 0:
            return ReservationReport()

        try:
            need = self.shortfall(reservation)
            processes = self.host.ps(self.home)
        except HostError as e:
            logger.warning("[reserve] cannot inspect %s: %s", self.home, e)
            return ReservationReport()

        if need <= 0:
            return ReservationReport()

        logger.warning(
            "[reserve] home reservation violated: need to free %.2fGB (reservation %.2fGB)",
            need, reservation,
        )

        candidates = []
        for proc in processes:
            kind = self.commands.kind_of(proc.filename)
            if kind is None:
                continue
            ram = proc.threads * self.commands.cost(self.host, kind)
            candidates.append((ram, proc, kind))
        candidates.sort(key=lambda c: c[0], reverse=True)

        report = ReservationReport(acted=False, shortfall=need)
        for ram, proc, kind in candidates:
            if report.freed >= need:
                break
            try:
                ok = self.host.kill(proc.pid)
            except HostError as e:
                logger.warning("[reserve] kill of pid %d failed: %s", proc.pid, e)
                continue
            if not ok:
                logger.warning("[reserve] kill of pid %d (%s) was refused", proc.pid, kind.value)
                continue
            report.freed += ram
            report.killed.append(
                KilledTask(pid=proc.pid, kind=kind, target=proc.target, threads=proc.threads, ram=ram)
            )
            logger.warning(
                "[reserve] killed %s[%d] targeting %s to free %.2fGB",
                kind.value, proc.threads, proc.target or "-", ram,
            )

        report.acted = bool(report.killed)
        if report.remaining > 0:
            logger.warning(
                "[reserve] still %.2fGB short after %d kill(s); retrying next pass",
                report.remaining, len(report.killed),
            )
        return report
