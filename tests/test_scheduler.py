import asyncio
import json

import pytest

from c2c.commands import Goal, TaskKind
from c2c.models import TaskAllocation
from c2c.scheduler import C2CScheduler
from components.simulated_host import NodeSpec
from extensions.ports import GOAL_PORT, HOME_RESERVE_PORT, STATE_PORT, TARGET_PORT, MemoryPorts, is_empty


@pytest.fixture
def host(make_host):
    return make_host({
        "home": {"max_ram": 64, "neighbours": ["n1", "empty", "darkweb", "locked"]},
        "n1": {"max_ram": 64, "neighbours": ["deep"]},
        "deep": {"max_ram": 32},
        "empty": {"max_ram": 0},
        "darkweb": {"max_ram": 64},
        "locked": {"max_ram": 64, "root": False},
    })


@pytest.fixture
def ports():
    return MemoryPorts()


def _signal(ports, goal=None, targets=None, reserve=None):
    if goal is not None:
        ports.write(GOAL_PORT, goal)
    if targets is not None:
        ports.write(TARGET_PORT, json.dumps([{"hostname": t} for t in targets]))
    if reserve is not None:
        ports.write(HOME_RESERVE_PORT, reserve)


def _scheduler(host, ports, cfg, rng):
    return C2CScheduler(host, ports, cfg, rng=rng)


def _engine_procs(host, commands, node, kind=None):
    return [
        p for p in host.ps(node)
        if commands.is_engine_script(p.filename) and (kind is None or commands.kind_of(p.filename) is kind)
    ]


@pytest.mark.asyncio
async def test_waits_without_goal_and_targets(host, ports, cfg, rng):
    s = _scheduler(host, ports, cfg, rng)
    result = await s.run_pass()
    assert result.status == "waiting"
    assert result.missing == ["goal", "targets"]
    assert result.visited == []

    _signal(ports, goal="hack")
    result = await s.run_pass()
    assert result.missing == ["targets"]
    assert is_empty(ports.peek(STATE_PORT))


@pytest.mark.asyncio
async def test_hack_pass_fills_every_usable_node(host, ports, cfg, rng, commands):
    _signal(ports, goal="hack", targets=["joesguns"])
    s = _scheduler(host, ports, cfg, rng)

    result = await s.run_pass()
    assert result.status == "ok"
    assert set(result.visited) == {"home", "n1", "deep", "empty", "darkweb", "locked"}
    assert result.new_useless == ["empty"]

    st = s.state
    assert st.node_allocation("home") == TaskAllocation(hack=1, grow=28, weaken=6)
    assert st.node_allocation("n1") == TaskAllocation(hack=1, grow=28, weaken=6)
    assert set(st.node_lists[TaskKind.GROW]) == {"home", "n1", "deep"}
    assert not st.is_assigned("darkweb")
    assert not st.is_assigned("locked")
    assert host.ps("darkweb") == []
    assert st.check_consistency() == []

    for node in ("home", "n1", "deep"):
        assert host.get_used_ram(node) <= host.get_max_ram(node)
        assert all(p.args[0] == "joesguns" for p in _engine_procs(host, commands, node))

    assert not is_empty(ports.peek(STATE_PORT))


@pytest.mark.asyncio
async def test_second_hack_pass_is_stable(host, ports, cfg, rng):
    _signal(ports, goal="hack", targets=["joesguns"])
    s = _scheduler(host, ports, cfg, rng)
    await s.run_pass()
    pids = {n: {p.pid for p in host.ps(n)} for n in ("home", "n1", "deep")}

    result = await s.run_pass()
    assert result.launched.is_empty()
    assert {n: {p.pid for p in host.ps(n)} for n in pids} == pids


@pytest.mark.asyncio
async def test_dead_workers_get_a_full_reallocation(host, ports, cfg, rng, commands):
    _signal(ports, goal="hack", targets=["joesguns"])
    s = _scheduler(host, ports, cfg, rng)
    await s.run_pass()

    for p in _engine_procs(host, commands, "n1"):
        host.kill(p.pid)
    result = await s.run_pass()
    assert result.launched == TaskAllocation(hack=1, grow=28, weaken=6)
    assert s.state.node_allocation("n1") == TaskAllocation(hack=1, grow=28, weaken=6)
    assert s.state.allocations["joesguns"].tasks.grow == 28 * 2 + s.state.node_allocation("deep").grow


@pytest.mark.asyncio
async def test_idle_capacity_tops_up_the_short_kind(host, ports, cfg, rng, commands):
    _signal(ports, goal="hack", targets=["joesguns"])
    s = _scheduler(host, ports, cfg, rng)
    await s.run_pass()

    for p in _engine_procs(host, commands, "n1", TaskKind.HACK):
        host.kill(p.pid)
    host.add_node("n1", NodeSpec(max_ram=80))

    result = await s.run_pass()
    assert result.launched.hack > 0
    assert result.launched.grow == 0
    assert result.launched.weaken == 0

    # deltas are added on top of what was recorded
    per_node = s.state.node_allocation("n1")
    assert per_node.grow == 28
    assert per_node.weaken == 6
    assert per_node.hack == 1 + result.launched.hack
    hack_threads = sum(p.threads for p in _engine_procs(host, commands, "n1", TaskKind.HACK))
    assert hack_threads == result.launched.hack
    assert host.get_used_ram("n1") <= 80


@pytest.mark.asyncio
async def test_full_home_is_retried_after_reservation_drops(host, ports, cfg, rng):
    _signal(ports, goal="hack", targets=["joesguns"], reserve="64")
    s = _scheduler(host, ports, cfg, rng)

    result = await s.run_pass()
    assert result.new_useless == ["empty"]
    assert "home" not in s.useless
    assert not s.state.is_assigned("home")

    _signal(ports, reserve="0")
    result = await s.run_pass()
    assert s.state.is_assigned("home")
    assert s.state.node_allocation("home") == TaskAllocation(hack=1, grow=28, weaken=6)


@pytest.mark.asyncio
async def test_server_filled_by_player_is_retried(host, ports, cfg, rng):
    _signal(ports, goal="hack", targets=["joesguns"])
    player = host.add_process("n1", "player.js", 1, ram=64.0)
    s = _scheduler(host, ports, cfg, rng)

    await s.run_pass()
    assert "n1" not in s.useless
    assert not s.state.is_assigned("n1")

    host.kill(player)
    await s.run_pass()
    assert s.state.node_allocation("n1") == TaskAllocation(hack=1, grow=28, weaken=6)


@pytest.mark.asyncio
async def test_state_survives_restart(host, ports, cfg, rng):
    _signal(ports, goal="hack", targets=["joesguns"], reserve="0")
    first = _scheduler(host, ports, cfg, rng)
    await first.run_pass()

    second = _scheduler(host, ports, cfg, rng)
    assert second.state == first.state
    result = await second.run_pass()
    assert result.launched.is_empty()


@pytest.mark.asyncio
async def test_ddos_goal(host, ports, cfg, rng, commands):
    _signal(ports, goal="ddos", targets=["a", "b"])
    s = _scheduler(host, ports, cfg, rng)
    await s.run_pass()

    # 64 / 1.75 -> 36 threads on each 64GB node
    assert s.state.node_allocation("home") == TaskAllocation(ddos=36)
    assert s.state.node_allocation("deep") == TaskAllocation(ddos=18)
    assert set(s.state.node_lists[TaskKind.DDOS]) == {"home", "n1", "deep"}
    for p in _engine_procs(host, commands, "n1"):
        assert p.args[0] in {"a", "b"}

    result = await s.run_pass()
    assert result.launched.is_empty()


@pytest.mark.asyncio
async def test_switching_goal_replaces_workers(host, ports, cfg, rng, commands):
    _signal(ports, goal="hack", targets=["joesguns"])
    s = _scheduler(host, ports, cfg, rng)
    await s.run_pass()

    _signal(ports, goal="share")
    await s.run_pass()
    assert s.state.goal is Goal.SHARE
    for node, threads in (("home", 16), ("n1", 16), ("deep", 8)):
        procs = _engine_procs(host, commands, node)
        assert [commands.kind_of(p.filename) for p in procs] == [TaskKind.SHARE]
        assert procs[0].threads == threads
        assert procs[0].args == ()
    assert s.state.untargeted["home"] == TaskAllocation(share=16)
    assert s.state.node_lists[TaskKind.GROW] == []
    assert s.state.check_consistency() == []


@pytest.mark.asyncio
async def test_home_reservation_is_enforced(host, ports, cfg, rng):
    _signal(ports, goal="hack", targets=["joesguns"])
    s = _scheduler(host, ports, cfg, rng)
    await s.run_pass()

    _signal(ports, reserve="32")
    result = await s.run_pass()
    assert result.reservation.acted
    assert host.get_max_ram("home") - host.get_used_ram("home") >= 32
    assert s.state.reserved_on_home == 32
    assert s.state.check_consistency() == []


@pytest.mark.asyncio
async def test_node_errors_do_not_abort_the_pass(host, ports, cfg, rng):
    _signal(ports, goal="hack", targets=["joesguns"])
    real = host.get_max_ram

    def flaky(node):
        if node == "n1":
            raise RuntimeError("boom")
        return real(node)

    host.get_max_ram = flaky
    s = _scheduler(host, ports, cfg, rng)
    result = await s.run_pass()
    assert result.status == "ok"
    assert not s.state.is_assigned("n1")
    assert s.state.is_assigned("deep")


@pytest.mark.asyncio
async def test_run_forever_stops_on_event(host, ports, cfg, rng):
    s = _scheduler(host, ports, cfg, rng)
    stop = asyncio.Event()
    assert await s.run_forever(stop, max_passes=3) == 3

    stop.set()
    assert await s.run_forever(stop) == 0
