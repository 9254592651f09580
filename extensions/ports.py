from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

logger = logging.getLogger(__name__)

# Port numbers shared by the scheduler and the control tools.
STATE_PORT = 9000
GOAL_PORT = 9001
TARGET_PORT = 9002
HOME_RESERVE_PORT = 9003

ALL_PORTS = (STATE_PORT, GOAL_PORT, TARGET_PORT, HOME_RESERVE_PORT)

NULL_PORT_DATA = "NULL PORT DATA"

PortData = Union[str, int, float]


def is_empty(data: Optional[str]) -> bool:
    return data is None or data == "" or data == NULL_PORT_DATA


class PortStore(Protocol):
    """
    Single-slot mailboxes: write overwrites, peek does not consume,
    clear empties. peek returns NULL_PORT_DATA for an empty port.
    """

    def peek(self, port: int) -> str: ...

    def write(self, port: int, data: PortData) -> None: ...

    def clear(self, port: int) -> None: ...


class MemoryPorts:
    """In-process ports (tests, single-process runs)."""

    def __init__(self) -> None:
        self._slots: Dict[int, str] = {}

    def peek(self, port: int) -> str:
        return self._slots.get(int(port), NULL_PORT_DATA)

    def write(self, port: int, data: PortData) -> None:
        self._slots[int(port)] = str(data)

    def clear(self, port: int) -> None:
        self._slots.pop(int(port), None)


class FilePorts:
    """
    Ports backed by one file per port under ``root``, so separate processes
    (the scheduler and the control CLI) can exchange messages.

    Writes go to a temp file that replaces the port file atomically; readers
    never see a half-written payload.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, port: int) -> Path:
        return self.root / f"port_{int(port)}.txt"

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=0.05, max=0.5, jitter=0.05),
        retry=retry_if_exception_type(PermissionError),
    )
    def _read(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def peek(self, port: int) -> str:
        path = self._path(port)
        try:
            data = self._read(path)
        except FileNotFoundError:
            return NULL_PORT_DATA
        except OSError as e:
            logger.warning("[ports] read of port %s failed: %s", port, e)
            return NULL_PORT_DATA
        return data if data else NULL_PORT_DATA

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=0.05, max=0.5, jitter=0.05),
        retry=retry_if_exception_type(PermissionError),
    )
    def write(self, port: int, data: PortData) -> None:
        path = self._path(port)
        fd, tmp = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=str(self.root))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(str(data))
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def clear(self, port: int) -> None:
        try:
            self._path(port).unlink()
        except FileNotFoundError:
            pass
