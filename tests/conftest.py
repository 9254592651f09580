import os
import random

import pytest

from c2c.commands import CommandSet, TaskKind, TaskMixRatios
from c2c.config import load_config
from components.simulated_host import NodeSpec, SimulatedHost


@pytest.fixture
def cfg(monkeypatch):
    for k in list(os.environ):
        if k.startswith("C2C_"):
            monkeypatch.delenv(k, raising=False)
    # no sleeping in tests
    monkeypatch.setenv("C2C_NODE_THROTTLE_SEC", "0")
    monkeypatch.setenv("C2C_WAIT_TIMEOUT_SEC", "0")
    monkeypatch.setenv("C2C_PASS_INTERVAL_SEC", "0")
    return load_config()


@pytest.fixture
def commands(cfg):
    return CommandSet.from_config(cfg)


@pytest.fixture
def ratios(cfg):
    return TaskMixRatios.from_config(cfg)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def make_host(commands):
    """Build a SimulatedHost whose script table matches the engine's commands."""

    def _make(nodes, **kwargs):
        scripts = {commands.path(k): commands[k].ram for k in TaskKind}
        specs = {name: NodeSpec(**spec) for name, spec in nodes.items()}
        return SimulatedHost(specs, scripts=scripts, **kwargs)

    return _make
