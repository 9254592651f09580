from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from c2c.commands import Goal
from c2c.config import load_config
from c2c.registry import parse_reservation
from components.simulated_host import SimulatedHost
from components.target_finder import STAGES, describe_targets, discover_targets
from extensions.checkpoint import StateCheckpoint
from extensions.logging import LoggingExtension
from extensions.ports import (
    ALL_PORTS,
    GOAL_PORT,
    HOME_RESERVE_PORT,
    TARGET_PORT,
    FilePorts,
    PortStore,
)
from extensions.stats_analyzer import node_frame

logger = logging.getLogger("c2c_ctl")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


# ----------------------------
# CLI parsing
# ----------------------------

def _build_parser() -> argparse.ArgumentParser:
    cfg = load_config()
    p = argparse.ArgumentParser(description="Send goal/targets/home reservation to a running C2C scheduler")
    p.add_argument("--ports-dir", type=Path, default=cfg.ports_dir, help="Directory backing the ports")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="command", required=True)

    g = sub.add_parser("set-goal", help="Switch the botnet goal")
    g.add_argument("goal", help=f"One of: {', '.join(x.value for x in Goal)}")

    t = sub.add_parser("set-targets", help="Point the botnet at servers (or the best N found)")
    t.add_argument("hosts", nargs="*", help="Target hostnames; omit to pick the best by score")
    t.add_argument("--count", type=int, default=2, help="How many targets to pick when none are given")
    t.add_argument("--stage", default=None, choices=list(STAGES), help="Scoring profile for automatic picks")
    t.add_argument("--network", type=Path, default=cfg.network_file, help="Network JSON used to describe targets")

    r = sub.add_parser("reserve-home", help="Keep GB of RAM free on home")
    r.add_argument("gb", help="Gigabytes to keep free (0 disables)")

    pk = sub.add_parser("peek", help="Print the contents of a port")
    pk.add_argument("port", type=int)

    c = sub.add_parser("clear", help="Empty a port")
    c.add_argument("port", type=int)

    sub.add_parser("status", help="Show the last state saved by the scheduler")
    return p


# ----------------------------
# Commands
# ----------------------------

def cmd_set_goal(ports: PortStore, raw: str) -> int:
    try:
        goal = Goal(raw.strip().lower())
    except ValueError:
        logger.error("invalid goal %r, valid goals: %s", raw, ", ".join(x.value for x in Goal))
        return EXIT_USAGE
    ports.clear(GOAL_PORT)
    ports.write(GOAL_PORT, goal.value)
    logger.info("Setting goal to %s", goal.value)
    return EXIT_OK


def cmd_set_targets(
    ports: PortStore,
    host: SimulatedHost,
    hosts: List[str],
    *,
    count: int = 2,
    stage: Optional[str] = None,
) -> int:
    if hosts:
        targets = describe_targets(host, hosts)
    else:
        targets = discover_targets(host, count, stage, root=host.home)
    if not targets:
        logger.error("no usable targets")
        return EXIT_FAILED
    payload = json.dumps([t.model_dump(mode="json") for t in targets])
    ports.clear(TARGET_PORT)
    ports.write(TARGET_PORT, payload)
    logger.info("Sending %s to port %d", ", ".join(t.hostname for t in targets), TARGET_PORT)
    return EXIT_OK


def cmd_reserve_home(ports: PortStore, raw: str) -> int:
    gb = parse_reservation(raw)
    if gb is None:
        logger.error("invalid reservation %r, expected a non-negative number of GB", raw)
        return EXIT_USAGE
    ports.clear(HOME_RESERVE_PORT)
    ports.write(HOME_RESERVE_PORT, f"{gb:g}")
    logger.info("Reserving %gGB on home", gb)
    return EXIT_OK


def cmd_peek(ports: PortStore, port: int) -> int:
    if port not in ALL_PORTS:
        logger.warning("port %d is not used by the scheduler", port)
    print(ports.peek(port))
    return EXIT_OK


def cmd_clear(ports: PortStore, port: int) -> int:
    ports.clear(port)
    logger.info("Cleared port %d", port)
    return EXIT_OK


def cmd_status(ports: PortStore) -> int:
    checkpoint = StateCheckpoint(ports)
    state = checkpoint.load()
    print(json.dumps(checkpoint.summary(state), indent=2))
    nodes = node_frame(state)
    if not nodes.empty:
        print(nodes.to_string(index=False))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    log_ext = LoggingExtension(global_level=getattr(logging, args.log_level))
    ports = FilePorts(args.ports_dir)
    try:
        if args.command == "set-goal":
            return cmd_set_goal(ports, args.goal)
        if args.command == "set-targets":
            try:
                host = SimulatedHost.load_network(args.network)
            except (OSError, ValueError) as e:
                logger.error("cannot load network %s: %s", args.network, e)
                return EXIT_FAILED
            return cmd_set_targets(ports, host, args.hosts, count=args.count, stage=args.stage)
        if args.command == "reserve-home":
            return cmd_reserve_home(ports, args.gb)
        if args.command == "peek":
            return cmd_peek(ports, args.port)
        if args.command == "clear":
            return cmd_clear(ports, args.port)
        if args.command == "status":
            return cmd_status(ports)
        return EXIT_USAGE
    finally:
        log_ext.close()


if __name__ == "__main__":
    raise SystemExit(main())
