"""Point-in-time reads of host and process counters using psutil."""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field

import psutil

from grouptop.models import HostCounters, MemoryInfo, ProcessReading

logger = logging.getLogger(__name__)

CLOCK_TICKS = os.sysconf("SC_CLK_TCK")

# Errors psutil raises for a process that vanished, is inaccessible or is
# half-torn-down while being read.
PROCESS_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess, OSError)


def to_ticks(seconds: float) -> int:
    """Convert psutil CPU seconds back to kernel clock ticks."""
    return round(seconds * CLOCK_TICKS)


@dataclass(slots=True)
class ProcessScan:
    """
    One full enumeration of live processes.

    ``pids`` lists every process the OS reported; ``readings`` only holds the
    ones that could be read this cycle.
    """

    pids: set[int] = field(default_factory=set)
    readings: dict[int, ProcessReading] = field(default_factory=dict)


def read_cpu_counters() -> HostCounters:
    """Read host-wide cumulative CPU ticks."""
    times = psutil.cpu_times()
    idle = times.idle + getattr(times, "iowait", 0.0)
    total = times.user + getattr(times, "nice", 0.0) + times.system + idle
    return HostCounters(total_ticks=to_ticks(total), idle_ticks=to_ticks(idle))


def read_memory_info() -> MemoryInfo:
    """Read host memory totals."""
    mem = psutil.virtual_memory()
    return MemoryInfo(total_kb=mem.total // 1024, available_kb=mem.available // 1024)


def core_count() -> int:
    """Number of logical CPUs."""
    return psutil.cpu_count(logical=True) or 1


def read_process(pid: int) -> ProcessReading | None:
    """
    Read one process.

    Returns None when the process exited or could not be read; the caller
    treats that as "no update for this pid this cycle".
    """
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            uid = proc.uids().real
            command = proc.name() or "unknown"
            rss = proc.memory_info().rss
            cpu = proc.cpu_times()
    except PROCESS_ERRORS:
        return None

    return ProcessReading(
        pid=pid,
        uid=uid,
        command=command,
        rss_kb=rss // 1024,
        cpu_ticks=to_ticks(cpu.user + cpu.system),
    )


def scan_processes(
    reader: Callable[[int], ProcessReading | None] = read_process,
) -> ProcessScan | None:
    """
    Enumerate and read every live process.

    Returns None if the process list itself could not be obtained.
    """
    try:
        pids = psutil.pids()
    except OSError:
        logger.warning("Unable to enumerate processes", exc_info=True)
        return None

    scan = ProcessScan(pids=set(pids))
    for pid in pids:
        reading = reader(pid)
        if reading is None:
            logger.debug("Skipping unreadable pid %d", pid)
            continue
        scan.readings[pid] = reading
    return scan


class HostSampler:
    """
    Host counter reader that survives momentary read failures.

    A failed read returns the last good value rather than zeros, so a single
    hiccup does not show up as 0% or 100% CPU.
    """

    def __init__(
        self,
        cpu_source: Callable[[], HostCounters] = read_cpu_counters,
        memory_source: Callable[[], MemoryInfo] = read_memory_info,
    ) -> None:
        self._cpu_source = cpu_source
        self._memory_source = memory_source
        self._counters: HostCounters | None = None
        self._memory: MemoryInfo | None = None

    def read_host_counters(self) -> HostCounters | None:
        """Return current CPU counters, or the previous ones if unreadable."""
        try:
            self._counters = self._cpu_source()
        except (OSError, psutil.Error, ValueError):
            logger.debug("CPU counters unreadable, keeping previous values", exc_info=True)
        return self._counters

    def read_memory(self) -> MemoryInfo | None:
        """Return current memory totals, or the previous ones if unreadable."""
        try:
            self._memory = self._memory_source()
        except (OSError, psutil.Error, ValueError):
            logger.debug("Memory info unreadable, keeping previous values", exc_info=True)
        return self._memory
