from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Optional

from pydantic import TypeAdapter, ValidationError

from extensions.ports import NULL_PORT_DATA

from .commands import Goal
from .models import EngineState, TargetDescriptor

logger = logging.getLogger("c2c.registry")

_TARGETS_ADAPTER = TypeAdapter(List[TargetDescriptor])


def _has_payload(payload: Any) -> bool:
    if payload is None:
        return False
    if isinstance(payload, str):
        s = payload.strip()
        return bool(s) and s != NULL_PORT_DATA
    return True


# --------------------------------------------------------------------------- #
# Boundary parsing: mailbox payload -> validated value (or None)
# --------------------------------------------------------------------------- #


def parse_goal(payload: Any) -> Optional[Goal]:
    if not _has_payload(payload):
        return None
    raw = str(payload).strip().lower()
    try:
        return Goal(raw)
    except ValueError:
        logger.warning("[registry] discarding invalid goal %r (valid: %s)", raw, ", ".join(g.value for g in Goal))
        return None


def parse_targets(payload: Any) -> Optional[List[TargetDescriptor]]:
    if not _has_payload(payload):
        return None
    try:
        obj = json.loads(payload) if isinstance(payload, (str, bytes, bytearray)) else payload
    except json.JSONDecodeError as e:
        logger.warning("[registry] discarding unparseable targets payload: %s", e)
        return None
    if not isinstance(obj, list):
        logger.warning("[registry] discarding targets payload: expected a JSON array, got %s", type(obj).__name__)
        return None
    try:
        targets = _TARGETS_ADAPTER.validate_python(obj)
    except ValidationError as e:
        logger.warning("[registry] discarding malformed targets payload: %s", e.errors()[:3])
        return None
    if not targets:
        return None

    # Keep first occurrence of each hostname.
    seen = set()
    out: List[TargetDescriptor] = []
    for t in targets:
        if t.hostname in seen:
            continue
        seen.add(t.hostname)
        out.append(t)
    return out


def parse_reservation(payload: Any) -> Optional[float]:
    if not _has_payload(payload):
        return None
    try:
        gb = float(str(payload).strip())
    except ValueError:
        logger.warning("[registry] discarding non-numeric home reservation %r", payload)
        return None
    if not math.isfinite(gb) or gb < 0:
        logger.warning("[registry] discarding invalid home reservation %r", payload)
        return None
    return gb


# --------------------------------------------------------------------------- #
# Signals
# --------------------------------------------------------------------------- #


def targets_have_changed(new_targets: List[TargetDescriptor], targets: List[TargetDescriptor]) -> bool:
    """Membership comparison on hostnames; order and scores are ignored."""
    return {t.hostname for t in new_targets} != {t.hostname for t in targets}


def set_goal(state: EngineState, goal: Optional[Goal]) -> bool:
    """Switch goal. Returns True when the state changed."""
    if goal is None or goal == state.goal:
        return False
    state.goal = goal
    state.reset_allocations()
    logger.info("[registry] goal set to %s", goal.value)
    return True


def set_targets(state: EngineState, targets: Optional[List[TargetDescriptor]]) -> bool:
    """Replace the target list when its hostname set differs. Returns True on change."""
    if not targets:
        return False
    if not targets_have_changed(targets, state.targets):
        return False
    state.targets = list(targets)
    state.reset_allocations()
    logger.info("[registry] targets set to %s", ", ".join(t.hostname for t in targets))
    return True


def set_reservation(state: EngineState, gb: Optional[float]) -> bool:
    if gb is None or gb == state.reserved_on_home:
        return False
    state.reserved_on_home = float(gb)
    logger.info("[registry] home reservation set to %.2fGB", gb)
    return True
