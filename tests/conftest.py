"""Shared helpers for grouptop tests."""

import pytest

from grouptop.models import ProcessReading
from grouptop.sampling import ProcessScan


def make_reading(
    pid: int,
    cpu_ticks: int = 0,
    uid: int = 1000,
    command: str = "worker",
    rss_kb: int = 1024,
) -> ProcessReading:
    return ProcessReading(pid=pid, uid=uid, command=command, rss_kb=rss_kb, cpu_ticks=cpu_ticks)


def make_scan(*readings: ProcessReading, unreadable: tuple[int, ...] = ()) -> ProcessScan:
    """Build a scan listing every reading plus pids that failed to read."""
    return ProcessScan(
        pids={reading.pid for reading in readings} | set(unreadable),
        readings={reading.pid: reading for reading in readings},
    )


class Sequence:
    """
    Callable returning queued values in order.

    Exceptions in the queue are raised instead of returned. The last value
    repeats once the queue is exhausted.
    """

    def __init__(self, *values) -> None:
        self._values = list(values)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        value = self._values.pop(0) if len(self._values) > 1 else self._values[0]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def login_defs(tmp_path):
    """Write a login.defs with the given body and return its path."""

    def write(body: str):
        path = tmp_path / "login.defs"
        path.write_text(body)
        return path

    return write
