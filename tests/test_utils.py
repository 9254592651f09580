import random
from collections import Counter

from c2c.utils import format_gb, format_threads, getenv_bool, getenv_csv, getenv_float, getenv_int, weighted_choice


def test_getenv_helpers(monkeypatch):
    monkeypatch.setenv("C2C_T_INT", "12")
    monkeypatch.setenv("C2C_T_FLOAT", "nan")
    monkeypatch.setenv("C2C_T_BOOL", "Yes")
    monkeypatch.setenv("C2C_T_CSV", "a, b,,c ")
    assert getenv_int("C2C_T_INT", 1, 0, 10) == 10
    assert getenv_int("C2C_T_MISSING", 3) == 3
    assert getenv_float("C2C_T_FLOAT", 0.5) == 0.5
    assert getenv_bool("C2C_T_BOOL", False) is True
    assert getenv_csv("C2C_T_CSV", "") == ("a", "b", "c")


def test_weighted_choice_never_picks_zero_weight():
    rng = random.Random(7)
    picks = Counter(weighted_choice(["a", "b", "c"], [0.0, 3.0, 1.0], rng) for _ in range(2000))
    assert picks["a"] == 0
    assert picks["b"] > picks["c"] > 0


def test_weighted_choice_falls_back_to_uniform():
    rng = random.Random(7)
    picks = Counter(weighted_choice(["a", "b"], [0.0, -1.0], rng) for _ in range(500))
    assert set(picks) == {"a", "b"}
    assert weighted_choice([], [], rng) is None


def test_formatting():
    assert format_threads(950) == "950"
    assert format_threads(1234) == "1.2k"
    assert format_threads(2_500_000) == "2.5m"
    assert format_gb(1.5) == "1.50GB"
