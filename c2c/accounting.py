from __future__ import annotations

import logging

from .commands import CommandSet
from .host import HostAPI, HostError

logger = logging.getLogger("c2c.accounting")


def engine_ram_used(host: HostAPI, node: str, commands: CommandSet) -> float:
    """RAM held by this engine's own worker processes on ``node``."""
    used = 0.0
    for proc in host.ps(node):
        kind = commands.kind_of(proc.filename)
        if kind is None:
            continue
        used += proc.threads * commands.cost(host, kind)
    return used


def free_capacity(
    host: HostAPI,
    node: str,
    commands: CommandSet,
    home_reservation: float = 0.0,
    *,
    home: str = "home",
) -> float:
    """
    Room the engine has on ``node`` if it replaced its own workers there:
    ``max - (used - engine) - (reservation on home)``.

    Fails closed: any host error yields 0.
    """
    try:
        max_ram = float(host.get_max_ram(node))
        used = float(host.get_used_ram(node))
        ours = engine_ram_used(host, node, commands)
    except HostError as e:
        logger.warning("[accounting] %s unreachable, treating as full: %s", node, e)
        return 0.0

    others = max(0.0, used - ours)
    free = max_ram - others
    if node == home:
        free -= max(0.0, float(home_reservation))
    return max(0.0, free)


def unused_capacity(
    host: HostAPI,
    node: str,
    home_reservation: float = 0.0,
    *,
    home: str = "home",
) -> float:
    """RAM that is idle right now on ``node`` (minus the home reservation)."""
    try:
        free = float(host.get_max_ram(node)) - float(host.get_used_ram(node))
    except HostError as e:
        logger.warning("[accounting] %s unreachable, treating as full: %s", node, e)
        return 0.0
    if node == home:
        free -= max(0.0, float(home_reservation))
    return max(0.0, free)
