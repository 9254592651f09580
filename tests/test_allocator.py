import pytest

from c2c.allocator import AllocatorConfig, ThreadAllocator
from c2c.commands import TaskKind
from c2c.models import TargetData, TargetDescriptor, MoneyData, TaskAllocation


@pytest.fixture
def host(make_host):
    return make_host({
        "home": {"max_ram": 64, "neighbours": ["n1", "locked"]},
        "n1": {"max_ram": 64},
        "big": {"max_ram": 1000},
        "locked": {"max_ram": 64, "root": False},
    })


@pytest.fixture
def alloc(cfg, host, commands, ratios, rng):
    return ThreadAllocator(host, commands, ratios, AllocatorConfig.from_config(cfg), rng=rng)


def _ram(a: TaskAllocation, costs) -> float:
    return a.capacity(costs)


def test_plan_64gb_matches_reference_split(alloc):
    assert alloc.plan(64) == TaskAllocation(hack=1, grow=28, weaken=6)


def test_plan_exact_multiple_of_unit_set(alloc):
    # 20 unit sets -> exactly one hack thread despite float noise in 20 * 0.05
    unit = alloc.unit_set_cost()
    out = alloc.plan(20 * unit + 1e-6)
    assert out.hack == 1
    assert out.weaken == 3


@pytest.mark.parametrize("capacity", [1.7, 1.75, 3.0, 10.0, 34.95, 52.43, 64.0, 100.5, 1000.0, 4096.0])
def test_plan_never_exceeds_budget(alloc, capacity):
    costs = alloc.costs()
    out = alloc.plan(capacity)
    assert _ram(out, costs) <= capacity + 1e-9
    assert out.ddos == 0 and out.share == 0


def test_plan_below_one_unit_set_uses_fallback_order(alloc):
    # unit set costs ~1.7475; 1.74 fits neither grow nor weaken (1.75) but does fit hack
    assert alloc.plan(1.74) == TaskAllocation(hack=1)
    assert alloc.plan(0) == TaskAllocation()
    assert alloc.plan(1.0) == TaskAllocation()


def test_plan_fallback_prefers_first_kind_that_fits(cfg, host, commands, ratios):
    a = ThreadAllocator(
        host, commands, ratios,
        AllocatorConfig(fallback_order=(TaskKind.HACK, TaskKind.GROW)),
    )
    costs = {TaskKind.HACK: 2.0, TaskKind.GROW: 1.0, TaskKind.WEAKEN: 1.0,
             TaskKind.DDOS: 1.0, TaskKind.SHARE: 4.0}
    # unit set = 0.05*2 + 0.775 + 0.175 = 1.05
    assert a.plan(1.0, costs) == TaskAllocation(grow=1)


def test_allocate_launches_workers_with_target_and_delay(alloc, host, commands):
    got = alloc.allocate("n1", "joesguns", 64)
    assert got == TaskAllocation(hack=1, grow=28, weaken=6)

    procs = host.ps("n1")
    by_kind = {commands.kind_of(p.filename): p for p in procs}
    assert set(by_kind) == {TaskKind.HACK, TaskKind.GROW, TaskKind.WEAKEN}
    for p in procs:
        assert p.args[0] == "joesguns"
        assert 0 <= p.args[1] <= 500
    assert host.get_used_ram("n1") <= 64


def test_allocate_clears_only_engine_workers(alloc, host, commands):
    foreign = host.add_process("n1", "player.js", 1, ram=8.0)
    alloc.allocate("n1", "a", 56)
    first = {p.pid for p in host.ps("n1") if commands.is_engine_script(p.filename)}

    # Room for our workers is whatever the player leaves us
    alloc.allocate("n1", "b", 56)
    pids = {p.pid for p in host.ps("n1")}
    assert foreign in pids
    assert not (first & pids)
    assert all(p.args[0] == "b" for p in host.ps("n1") if commands.is_engine_script(p.filename))


def test_allocate_on_unrooted_node_launches_nothing(alloc):
    assert alloc.allocate("locked", "a", 64).is_empty()


def test_target_slots(cfg, host, commands, ratios, alloc):
    # 40 unit sets per target, ~69.9GB
    assert alloc.min_ram_per_target() == pytest.approx(40 * alloc.unit_set_cost())
    assert alloc.target_slots(64) == 1
    assert alloc.target_slots(150) == 2
    assert alloc.target_slots(1000) == 4

    single = ThreadAllocator(host, commands, ratios, AllocatorConfig(multi_target=False))
    assert single.target_slots(1000) == 1


def _target(name, money=0.0, time=0.0, score=0.0):
    data = TargetData(money=MoneyData(max=money), time=time) if money else None
    return TargetDescriptor(hostname=name, score=score, data=data)


def test_select_targets_prefers_value_per_time(alloc):
    targets = [_target("rich", money=1e9, time=1000), _target("zero", money=0.0)]
    picks = alloc.select_targets(targets, 1000)
    assert len(picks) == 4
    assert {p.hostname for p in picks} == {"rich"}


def test_select_targets_uniform_without_weights(alloc):
    targets = [_target("a"), _target("b")]
    picks = alloc.select_targets(targets, 64)
    assert len(picks) == 1
    assert picks[0].hostname in {"a", "b"}
    assert alloc.select_targets([], 64) == []


def test_allocate_many_splits_capacity(alloc, host):
    targets = [_target("a"), _target("b")]
    out = alloc.allocate_many("big", targets, 1000)
    assert set(out) == {"a", "b"}
    assert out["a"] == out["b"] == alloc.plan(500)
    assert host.get_used_ram("big") <= 1000


def test_allocate_many_merges_repeated_picks(alloc):
    t = _target("a")
    out = alloc.allocate_many("big", [t, t], 1000)
    assert list(out) == ["a"]
    assert out["a"] == alloc.plan(500).plus(alloc.plan(500))
