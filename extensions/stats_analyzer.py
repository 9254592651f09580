from __future__ import annotations

from typing import Dict, Mapping

import pandas as pd

from c2c.commands import HGW, TaskKind
from c2c.models import EngineState, TaskAllocation

# ---------------------------
# Helpers
# ---------------------------

def _safe_div(n: float, d: float) -> float:
    return float(n) / float(d) if d not in (0, 0.0, None) else 0.0


_COLUMNS = ["target", "grow", "weaken", "hack", "ddos", "total"]


# ---------------------------
# Frames
# ---------------------------

def allocation_frame(state: EngineState) -> pd.DataFrame:
    """
    One row per target with recorded threads: grow/weaken/hack/ddos counts,
    their total, and hack/grow/weaken shares of the hgw total.
    Targets with no threads are left out.
    """
    rows = []
    for hostname, ta in state.allocations.items():
        t = ta.tasks
        if t.hgw_total() == 0 and t.ddos == 0:
            continue
        rows.append({
            "target": hostname,
            "grow": t.grow,
            "weaken": t.weaken,
            "hack": t.hack,
            "ddos": t.ddos,
            "total": t.hgw_total() + t.ddos,
        })
    df = pd.DataFrame(rows, columns=_COLUMNS)
    if df.empty:
        return df
    hgw = df["grow"] + df["weaken"] + df["hack"]
    for k in ("grow", "weaken", "hack"):
        df[f"{k}_pct"] = [_safe_div(v, d) for v, d in zip(df[k], hgw)]
    return df.sort_values(["total", "target"], ascending=[False, True]).reset_index(drop=True)


def node_frame(state: EngineState) -> pd.DataFrame:
    """Threads per node and kind, summed over targets (plus untargeted share)."""
    nodes = set(state.untargeted)
    for ta in state.allocations.values():
        nodes.update(ta.nodes)
    rows = []
    for node in sorted(nodes):
        per = state.node_allocation(node)
        if per.is_empty():
            continue
        row: Dict[str, object] = {"node": node}
        row.update({k.value: per.get(k) for k in TaskKind})
        rows.append(row)
    return pd.DataFrame(rows, columns=["node"] + [k.value for k in TaskKind])


# ---------------------------
# Rendering
# ---------------------------

def render_allocation_table(state: EngineState) -> str:
    """Text table: counts with their share of the target's hgw threads."""
    df = allocation_frame(state)
    if df.empty:
        return "No server allocation data available."
    out = pd.DataFrame({
        "hostname": df["target"],
        "grow": [f"{g} ({p:.1%})" for g, p in zip(df["grow"], df["grow_pct"])],
        "weaken": [f"{w} ({p:.1%})" for w, p in zip(df["weaken"], df["weaken_pct"])],
        "hack": [f"{h} ({p:.1%})" for h, p in zip(df["hack"], df["hack_pct"])],
        "total": df["total"],
    })
    if df["ddos"].any():
        out.insert(4, "ddos", df["ddos"])
    return out.to_string(index=False)


def render_assignment(added: Mapping[str, TaskAllocation], title: str) -> str:
    """Compact grow/weak/hack table for the threads just launched on one node."""
    rows = [
        {"grow": a.grow, "weak": a.weaken, "hack": a.hack, "target": host}
        for host, a in added.items()
        if any(a.get(k) > 0 for k in HGW)
    ]
    if not rows:
        return ""
    df = pd.DataFrame(rows, columns=["grow", "weak", "hack", "target"])
    return f"{title}\n{df.to_string(index=False)}"
