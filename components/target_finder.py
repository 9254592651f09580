from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional

from c2c.host import HostAPI, HostError
from c2c.models import MoneyData, SecurityData, TargetData, TargetDescriptor

from components.network import list_servers

logger = logging.getLogger(__name__)

STAGES = ("early", "mid", "late")


def enum_target(host: HostAPI, node: str) -> TargetData:
    """Money/security/growth/time/chance snapshot of one server."""
    s = host.get_server(node)
    return TargetData(
        money=MoneyData(max=s.money_max, current=s.money_available),
        security=SecurityData(min=s.security_min, base=s.security_base, current=s.security_current),
        growth=s.growth,
        time=s.hack_time,
        chance=s.hack_chance,
    )


def calculate_score(data: TargetData, stage: Optional[str] = None) -> float:
    """
    Profitability score for a game stage.

    - early: cheap targets first; low security and short hack time dominate.
    - mid:   growth weighs double; targets already holding money get a bonus.
    - late:  money ceiling over hack time; security matters only a little.
    - other: money * growth / (security * time).

    Inputs are clamped to at least 1 so empty servers never divide by zero.
    """
    security_factor = data.security.min / max(data.security.current, 1.0)
    money_factor = data.money.current / max(data.money.max, 1.0)
    hack_time = max(data.time, 1.0)
    money_max = max(data.money.max, 1.0)
    growth = max(data.growth, 1.0)
    min_security = max(data.security.min, 1.0)

    stage = (stage or "").strip().lower()
    if stage == "early":
        return (money_max * growth) / (min_security ** 2 * hack_time)
    if stage == "mid":
        score = (money_max * growth ** 2) / (min_security * math.sqrt(hack_time))
        return score * (0.5 + 0.5 * money_factor)
    if stage == "late":
        score = money_max ** 1.5 / hack_time
        score *= 1 + growth / 100
        return score * math.sqrt(max(security_factor, 0.0))
    return (money_max * growth) / (min_security * hack_time)


def find_targets(
    host: HostAPI,
    servers: Iterable[str],
    count: int,
    stage: Optional[str] = None,
) -> List[TargetDescriptor]:
    """Score ``servers`` and return the best ``count`` of them, highest first."""
    analyzed: List[TargetDescriptor] = []
    for node in servers:
        try:
            data = enum_target(host, node)
        except HostError as e:
            logger.warning("[targets] skipping %s: %s", node, e)
            continue
        analyzed.append(TargetDescriptor(hostname=node, score=calculate_score(data, stage), data=data))

    analyzed.sort(key=lambda t: t.score, reverse=True)

    for t in analyzed[:5]:
        logger.debug(
            "[targets] %s: score=%.2f $=%.0f sec=%.2f growth=%.0f",
            t.hostname, t.score, t.data.money.max, t.data.security.min, t.data.growth,
        )
    return analyzed[: max(0, int(count))]


def describe_targets(host: HostAPI, servers: Iterable[str]) -> List[TargetDescriptor]:
    """Descriptors for hand-picked servers, in the given order, all scored 1."""
    out: List[TargetDescriptor] = []
    for node in servers:
        try:
            data = enum_target(host, node)
        except HostError as e:
            logger.warning("[targets] skipping %s: %s", node, e)
            continue
        out.append(TargetDescriptor(hostname=node, score=1.0, data=data))
    return out


def hackable_servers(host: HostAPI, root: str = "home") -> List[str]:
    """Rooted servers within the current hacking level, purchased servers excluded."""
    level = host.get_hacking_level()
    out: List[str] = []
    for node in list_servers(host, root):
        if "pserv" in node:
            continue
        try:
            if not host.has_root_access(node):
                continue
            if host.get_server(node).required_hacking_level > level:
                continue
        except HostError as e:
            logger.warning("[targets] cannot inspect %s: %s", node, e)
            continue
        out.append(node)
    return out


def discover_targets(
    host: HostAPI,
    count: int,
    stage: Optional[str] = None,
    *,
    root: str = "home",
) -> List[TargetDescriptor]:
    targets = find_targets(host, hackable_servers(host, root), count, stage)
    logger.info("[targets] picked %s (stage=%s)", ", ".join(t.hostname for t in targets) or "-", stage or "default")
    return targets
