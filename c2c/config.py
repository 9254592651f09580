from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .utils import getenv_bool, getenv_csv, getenv_float, getenv_int, getenv_str

# ---------- Project Paths ----------
PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
DATA_DIR: Path = PROJECT_ROOT / "data"
LOG_DIR: Path = PROJECT_ROOT / "logs"

# Subfolders & files (paths only; created by the CLIs, not at import time)
PORTS_DIR: Path = DATA_DIR / "ports"
NETWORK_FILE: Path = DATA_DIR / "network.json"
LOG_FILE: Path = LOG_DIR / "c2c.log"


# ---------- Config dataclass ----------
@dataclass(frozen=True)
class Config:
    # Topology
    home_hostname: str
    scripts_dir: str
    ignore_nodes: tuple[str, ...]

    # Loop timing
    pass_interval_sec: float                    # sleep between full passes
    wait_timeout_sec: float                     # sleep while goal/targets are missing
    node_throttle_sec: float                    # yield after each visited node

    # Worker start jitter (passed to worker scripts as their sleep between cycles)
    start_delay_min_ms: int
    start_delay_max_ms: int

    # Task mix ratios (must sum to 1)
    ratio_hack: float
    ratio_grow: float
    ratio_weaken: float

    # Per-thread RAM of worker scripts (used when the host reports no cost)
    ram_hack: float
    ram_grow: float
    ram_weaken: float
    ram_ddos: float
    ram_share: float

    # Allocation policy
    fallback_order: tuple[str, ...]             # task kinds tried when not even one unit set fits
    multi_target: bool                          # split large nodes across several targets
    max_targets_per_node: int
    multi_target_set_factor: int                # unit sets per target = ceil(1/ratio_hack) * factor
    min_deficit_threads: float                  # optimizer ignores deficits below this many threads

    # Paths
    project_root: Path
    data_dir: Path
    ports_dir: Path
    network_file: Path
    log_file: Path
    log_level: str


# ---------- Loader ----------
def load_config() -> Config:

    cfg = Config(
        home_hostname=getenv_str("C2C_HOME", "home"),
        scripts_dir=getenv_str("C2C_SCRIPTS_DIR", "c2c/actions/"),
        ignore_nodes=getenv_csv("C2C_IGNORE_NODES", "darkweb"),

        # One full pass a minute; config changes are picked up within the short wait.
        pass_interval_sec=getenv_float("C2C_PASS_INTERVAL_SEC", 60.0, 0.0, 3600.0),
        wait_timeout_sec=getenv_float("C2C_WAIT_TIMEOUT_SEC", 10.0, 0.0, 600.0),
        node_throttle_sec=getenv_float("C2C_NODE_THROTTLE_SEC", 1.0, 0.0, 60.0),

        start_delay_min_ms=getenv_int("C2C_START_DELAY_MIN_MS", 0, 0, 60_000),
        start_delay_max_ms=getenv_int("C2C_START_DELAY_MAX_MS", 500, 0, 60_000),

        # Grow/weaken far more than hack to keep target money up and security down.
        ratio_hack=getenv_float("C2C_RATIO_HACK", 0.05, 0.0, 1.0),
        ratio_grow=getenv_float("C2C_RATIO_GROW", 0.775, 0.0, 1.0),
        ratio_weaken=getenv_float("C2C_RATIO_WEAKEN", 0.175, 0.0, 1.0),

        ram_hack=getenv_float("C2C_RAM_HACK", 1.7, 0.1, 1024.0),
        ram_grow=getenv_float("C2C_RAM_GROW", 1.75, 0.1, 1024.0),
        ram_weaken=getenv_float("C2C_RAM_WEAKEN", 1.75, 0.1, 1024.0),
        ram_ddos=getenv_float("C2C_RAM_DDOS", 1.75, 0.1, 1024.0),
        ram_share=getenv_float("C2C_RAM_SHARE", 4.0, 0.1, 1024.0),

        fallback_order=getenv_csv("C2C_FALLBACK_ORDER", "grow,weaken,hack"),
        multi_target=getenv_bool("C2C_MULTI_TARGET", True),
        max_targets_per_node=getenv_int("C2C_MAX_TARGETS_PER_NODE", 4, 1, 32),
        multi_target_set_factor=getenv_int("C2C_MULTI_TARGET_SET_FACTOR", 2, 1, 100),
        min_deficit_threads=getenv_float("C2C_MIN_DEFICIT_THREADS", 1.0, 0.0, 1000.0),

        project_root=PROJECT_ROOT,
        data_dir=DATA_DIR,
        ports_dir=Path(getenv_str("C2C_PORTS_DIR", str(PORTS_DIR))),
        network_file=Path(getenv_str("C2C_NETWORK_FILE", str(NETWORK_FILE))),
        log_file=Path(getenv_str("C2C_LOG_FILE", str(LOG_FILE))),
        log_level=getenv_str("C2C_LOG_LEVEL", "INFO").upper(),
    )
    return cfg
