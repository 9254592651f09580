from __future__ import annotations

import math
import os
import random
from typing import Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")


# ========== Env helpers ==========

def getenv_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return v if v is not None and v.strip() else default

def getenv_int(name: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    if min_val is not None:
        val = max(min_val, val)
    if max_val is not None:
        val = min(max_val, val)
    return val

def getenv_float(name: str, default: float, min_val: Optional[float] = None, max_val: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = float(raw)
    except ValueError:
        return default
    if math.isnan(val):
        return default
    if min_val is not None:
        val = max(min_val, val)
    if max_val is not None:
        val = min(max_val, val)
    return val

def getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


# parse CSV-ish envs into tuples (trim blanks)
def getenv_csv(name: str, default_csv: str) -> Tuple[str, ...]:
    raw = getenv_str(name, default_csv)
    parts = [x.strip() for x in raw.split(",")]
    return tuple(p for p in parts if p)


# ========== Selection helpers ==========

def weighted_choice(items: Sequence[T], weights: Sequence[float], rng: Optional[random.Random] = None) -> Optional[T]:
    """
    Pick one item with probability proportional to its weight.

    Non-positive weights never win. When every weight is non-positive the
    choice is uniform. Returns None for an empty sequence.
    """
    if not items:
        return None
    rng = rng or random
    clean = [w if (w > 0 and math.isfinite(w)) else 0.0 for w in weights]
    total = sum(clean)
    if total <= 0:
        return items[rng.randrange(len(items))]

    point = rng.random() * total
    acc = 0.0
    for item, w in zip(items, clean):
        acc += w
        if w > 0 and point < acc:
            return item
    # float rounding at the upper edge
    for item, w in zip(reversed(items), reversed(clean)):
        if w > 0:
            return item
    return items[-1]


# ========== Formatting ==========

def format_threads(n: float) -> str:
    """Short thread count: 950 -> '950', 1234 -> '1.2k', 2_500_000 -> '2.5m'."""
    n = float(n)
    if abs(n) >= 1_000_000:
        return f"{n / 1_000_000:.1f}m"
    if abs(n) >= 1000:
        return f"{n / 1000:.1f}k"
    return str(int(n)) if n == int(n) else f"{n:.1f}"

def format_gb(gb: float) -> str:
    return f"{float(gb):.2f}GB"
