from __future__ import annotations

import json
import logging
from typing import Any, Dict

from pydantic import ValidationError

from c2c.models import REQUIRED_STATE_KEYS, EngineState
from extensions.ports import STATE_PORT, PortStore, is_empty

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Snapshot encoding
# ---------------------------------------------------------------------------


class StateValidationError(ValueError):
    """A persisted engine state is unreadable or has the wrong shape."""


def dump_state(state: EngineState) -> str:
    return json.dumps(state.model_dump(mode="json"), separators=(",", ":"), ensure_ascii=False)


def restore_state(text: str) -> EngineState:
    """
    Parse and validate a snapshot. Every required top-level key must be
    present; a partial snapshot is rejected rather than half-loaded.
    """
    try:
        raw: Any = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise StateValidationError(f"state is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise StateValidationError(f"state must be a JSON object, got {type(raw).__name__}")
    missing = [k for k in REQUIRED_STATE_KEYS if k not in raw]
    if missing:
        raise StateValidationError(f"state is missing keys: {', '.join(missing)}")
    try:
        return EngineState.model_validate(raw)
    except ValidationError as e:
        raise StateValidationError(f"state has the wrong shape: {e.errors()[:3]}") from e


# ---------------------------------------------------------------------------
#  Checkpoint on the state port
# ---------------------------------------------------------------------------


class StateCheckpoint:
    """
    Persists the engine state on a mailbox port at the end of every pass and
    reads it back once at startup.

    Recovery is best effort: a corrupt snapshot is discarded and the engine
    starts from an empty state; the next full pass reconciles against the
    live process tables.
    """

    def __init__(self, ports: PortStore, port: int = STATE_PORT) -> None:
        self.ports = ports
        self.port = port

    def load(self) -> EngineState:
        data = self.ports.peek(self.port)
        if is_empty(data):
            logger.info("[checkpoint] no saved state, starting fresh")
            return EngineState()
        try:
            state = restore_state(data)
        except StateValidationError as e:
            logger.warning("[checkpoint] discarding saved state: %s", e)
            return EngineState()

        if state.goal is not None:
            logger.info("[checkpoint] restored goal: %s", state.goal.value)
        if state.targets:
            logger.info("[checkpoint] restored targets: %s", ", ".join(t.hostname for t in state.targets))
        return state

    def save(self, state: EngineState) -> None:
        payload = dump_state(state)
        try:
            self.ports.write(self.port, payload)
        except OSError as e:
            logger.error("[checkpoint] save failed: %s", e)

    def summary(self, state: EngineState) -> Dict[str, Any]:
        """Small dict for logs and the control CLI."""
        totals = state.totals()
        return {
            "goal": state.goal.value if state.goal else None,
            "targets": [t.hostname for t in state.targets],
            "reserved_on_home": state.reserved_on_home,
            "threads": totals.model_dump(),
            "nodes": {k.value: len(v) for k, v in state.node_lists.items()},
        }
