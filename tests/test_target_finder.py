import pytest

from c2c.models import MoneyData, SecurityData, TargetData
from components.target_finder import (
    calculate_score,
    describe_targets,
    discover_targets,
    enum_target,
    find_targets,
    hackable_servers,
)

CHEAP = dict(money_max=1e6, money_available=0, security_min=1, security_current=1, growth=10, hack_time=1000)
RICH = dict(money_max=1e9, money_available=0, security_min=20, security_current=20, growth=10, hack_time=50_000)


@pytest.fixture
def host(make_host):
    return make_host(
        {
            "home": {"max_ram": 64, "neighbours": ["cheap", "rich", "pserv-1", "locked", "elite"]},
            "cheap": dict(CHEAP),
            "rich": dict(RICH),
            "pserv-1": dict(RICH, purchased=True),
            "locked": dict(RICH, root=False),
            "elite": dict(RICH, required_hacking_level=500),
        },
        hacking_level=100,
    )


def test_default_score_formula():
    data = TargetData(
        money=MoneyData(max=100, current=50),
        security=SecurityData(min=2, base=5, current=5),
        growth=2,
        time=10,
    )
    assert calculate_score(data) == pytest.approx(10.0)
    assert calculate_score(data, "unknown-stage") == pytest.approx(10.0)


def test_empty_server_does_not_divide_by_zero():
    for stage in (None, "early", "mid", "late"):
        assert calculate_score(TargetData(), stage) >= 0


def test_stage_changes_ranking(host):
    early = find_targets(host, ["rich", "cheap"], 2, "early")
    assert [t.hostname for t in early] == ["cheap", "rich"]

    late = find_targets(host, ["cheap", "rich"], 2, "late")
    assert [t.hostname for t in late] == ["rich", "cheap"]

    mid = find_targets(host, ["cheap", "rich"], 2, "mid")
    assert [t.hostname for t in mid] == ["rich", "cheap"]


def test_find_targets_truncates_to_count(host):
    assert len(find_targets(host, ["cheap", "rich"], 1, "early")) == 1
    assert find_targets(host, ["cheap", "rich"], 0) == []
    # unknown nodes are skipped
    assert [t.hostname for t in find_targets(host, ["ghost", "cheap"], 5)] == ["cheap"]


def test_enum_target_reads_server(host):
    data = enum_target(host, "rich")
    assert data.money.max == 1e9
    assert data.security.min == 20
    assert data.time == 50_000


def test_hackable_servers_filters(host):
    assert sorted(hackable_servers(host)) == ["cheap", "rich"]


def test_discover_targets(host):
    picked = discover_targets(host, 1, "early")
    assert [t.hostname for t in picked] == ["cheap"]
    assert picked[0].data is not None


def test_describe_targets_keeps_given_order(host):
    out = describe_targets(host, ["rich", "cheap"])
    assert [t.hostname for t in out] == ["rich", "cheap"]
    assert all(t.score == 1.0 for t in out)
