"""Data models for grouptop."""

from dataclasses import dataclass

KB_PER_GB = 1024 * 1024


@dataclass(slots=True, frozen=True)
class ProcessReading:
    """One raw read of a live process."""

    pid: int
    uid: int
    command: str
    rss_kb: int
    cpu_ticks: int  # user + system, clock ticks


@dataclass(slots=True)
class ProcessRecord:
    """
    Last-known state of a tracked process.

    ``uid`` and ``command`` are captured on first sighting and never change for
    the lifetime of the record. Everything else is refreshed each cycle.
    """

    pid: int
    uid: int
    command: str
    rss_kb: int = 0
    cpu_ticks: int = 0
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    gpu_memory_mb: int = 0
    sampled_host_ticks: int | None = None  # host total when cpu_ticks was read


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable copy of a process record, safe to hand to readers."""

    pid: int
    uid: int
    command: str
    rss_kb: int
    cpu_percent: float
    memory_percent: float
    gpu_memory_mb: int

    @classmethod
    def from_record(cls, record: ProcessRecord) -> "ProcessSnapshot":
        return cls(
            pid=record.pid,
            uid=record.uid,
            command=record.command,
            rss_kb=record.rss_kb,
            cpu_percent=record.cpu_percent,
            memory_percent=record.memory_percent,
            gpu_memory_mb=record.gpu_memory_mb,
        )


@dataclass(slots=True, frozen=True)
class HostCounters:
    """Cumulative host CPU ticks summed over all cores."""

    total_ticks: int  # user + nice + system + idle + iowait
    idle_ticks: int  # idle + iowait


@dataclass(slots=True, frozen=True)
class MemoryInfo:
    """Host memory totals in kilobytes."""

    total_kb: int
    available_kb: int

    @property
    def used_kb(self) -> int:
        return max(0, self.total_kb - self.available_kb)

    @property
    def used_percent(self) -> float:
        if self.total_kb <= 0:
            return 0.0
        return 100.0 * (1.0 - self.available_kb / self.total_kb)

    @property
    def used_gb(self) -> float:
        return self.used_kb / KB_PER_GB

    @property
    def total_gb(self) -> float:
        return self.total_kb / KB_PER_GB


@dataclass(slots=True)
class ProcessGroup:
    """Aggregated usage of every process sharing a group name."""

    name: str
    count: int = 0
    cpu_percent: float = 0.0
    rss_kb: int = 0
    gpu_memory_mb: int = 0

    @property
    def memory_gb(self) -> float:
        return self.rss_kb / KB_PER_GB

    @property
    def score(self) -> float:
        """Ranking heuristic: heavy RAM, CPU or GPU each push a group up."""
        return self.memory_gb + self.cpu_percent + self.gpu_memory_mb / 2


@dataclass(slots=True, frozen=True)
class GpuStaticInfo:
    """GPU description queried once at startup."""

    available: bool
    name: str = ""
    total_memory_mb: float = 0.0
    driver_version: str = ""

    @property
    def total_memory_gb(self) -> float:
        return self.total_memory_mb / 1024


@dataclass(slots=True, frozen=True)
class GpuDynamicInfo:
    """GPU load sampled each cycle."""

    utilization_percent: float
    memory_used_mb: float
    memory_utilization_percent: float
