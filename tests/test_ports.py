from pathlib import Path

import pytest

from extensions.ports import GOAL_PORT, NULL_PORT_DATA, TARGET_PORT, FilePorts, MemoryPorts, is_empty


@pytest.fixture(params=["memory", "file"])
def ports(request, tmp_path: Path):
    if request.param == "memory":
        return MemoryPorts()
    return FilePorts(tmp_path / "ports")


def test_empty_port_peeks_null(ports):
    assert ports.peek(GOAL_PORT) == NULL_PORT_DATA
    assert is_empty(ports.peek(GOAL_PORT))


def test_write_overwrites_and_peek_does_not_consume(ports):
    ports.write(GOAL_PORT, "hack")
    ports.write(GOAL_PORT, "share")
    assert ports.peek(GOAL_PORT) == "share"
    assert ports.peek(GOAL_PORT) == "share"
    assert ports.peek(TARGET_PORT) == NULL_PORT_DATA


def test_clear_empties_port(ports):
    ports.write(GOAL_PORT, 12.5)
    assert ports.peek(GOAL_PORT) == "12.5"
    ports.clear(GOAL_PORT)
    ports.clear(GOAL_PORT)
    assert ports.peek(GOAL_PORT) == NULL_PORT_DATA


def test_file_ports_are_shared_between_instances(tmp_path: Path):
    a = FilePorts(tmp_path)
    b = FilePorts(tmp_path)
    a.write(TARGET_PORT, '[{"hostname": "n00dles"}]')
    assert b.peek(TARGET_PORT) == '[{"hostname": "n00dles"}]'
    # no temp files left behind by the atomic write
    assert [p.name for p in tmp_path.iterdir()] == [f"port_{TARGET_PORT}.txt"]


def test_file_ports_empty_file_reads_as_null(tmp_path: Path):
    p = FilePorts(tmp_path)
    (tmp_path / f"port_{GOAL_PORT}.txt").write_text("", encoding="utf-8")
    assert p.peek(GOAL_PORT) == NULL_PORT_DATA


def test_is_empty():
    assert is_empty(None)
    assert is_empty("")
    assert is_empty(NULL_PORT_DATA)
    assert not is_empty("0")
