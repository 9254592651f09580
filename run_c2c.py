from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
from pathlib import Path

from c2c.config import load_config
from c2c.scheduler import C2CScheduler
from components.simulated_host import SimulatedHost
from extensions.logging import LoggingExtension
from extensions.ports import FilePorts


# ----------------------------
# CLI parsing
# ----------------------------

def _parse_args() -> argparse.Namespace:
    cfg = load_config()
    p = argparse.ArgumentParser(
        description="Run the C2C scheduler: walk the network, keep every rooted node busy for the current goal"
    )
    p.add_argument("--network", type=Path, default=cfg.network_file, help="Network JSON for the simulated host")
    p.add_argument("--ports-dir", type=Path, default=cfg.ports_dir, help="Directory backing the signal/state ports")
    p.add_argument("--once", action="store_true", help="Run a single pass and exit")
    p.add_argument("--pass-interval", type=float, default=None, help="Seconds between full passes (overrides C2C_PASS_INTERVAL_SEC)")
    p.add_argument("--log-file", type=Path, default=cfg.log_file, help="Append logs to this file")
    p.add_argument("--log-level", default=cfg.log_level, choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Console/file log level")
    return p.parse_args()


# ----------------------------
# Main
# ----------------------------

async def main_async() -> int:
    args = _parse_args()

    level = getattr(logging, args.log_level)
    log_ext = LoggingExtension(args.log_file, global_level=level)
    logger = logging.getLogger("run_c2c")

    cfg = load_config()
    if args.pass_interval is not None:
        cfg = dataclasses.replace(cfg, pass_interval_sec=max(0.0, args.pass_interval))

    try:
        host = SimulatedHost.load_network(args.network)
    except (OSError, ValueError) as e:
        logger.error("cannot load network %s: %s", args.network, e)
        log_ext.close()
        return 1

    ports = FilePorts(args.ports_dir)
    scheduler = C2CScheduler(host, ports, cfg)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        passes = await scheduler.run_forever(stop_event, max_passes=1 if args.once else None)
        logger.info("stopped after %d pass(es)", passes)
    finally:
        log_ext.close()
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
