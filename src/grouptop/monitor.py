"""Sampling engine and polling drivers for grouptop."""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from queue import Queue

from grouptop.config import MonitorConfig
from grouptop.gpu import merge_gpu_memory, query_dynamic_info, query_process_memory, query_static_info
from grouptop.grouping import group_processes, sort_groups
from grouptop.models import GpuDynamicInfo, GpuStaticInfo, HostCounters, MemoryInfo, ProcessGroup, ProcessSnapshot
from grouptop.sampling import HostSampler, ProcessScan, core_count, scan_processes
from grouptop.table import ProcessTable, host_cpu_percent, reconcile

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SystemSnapshot:
    """Published result of one sampling cycle."""

    cpu_percent: float
    core_count: int
    memory: MemoryInfo | None
    gpu: GpuStaticInfo
    gpu_usage: GpuDynamicInfo | None = None
    processes: list[ProcessSnapshot] = field(default_factory=list)
    groups: list[ProcessGroup] = field(default_factory=list)


class Monitor:
    """
    Sampling context carried from one cycle to the next.

    Owns the process table and the previous host counters. sample() runs one
    full cycle: host read, process scan, GPU query, reconciliation, GPU merge
    and grouping. Not thread-safe; drive it from a single thread.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        host_sampler: HostSampler | None = None,
        scanner: Callable[[], ProcessScan | None] = scan_processes,
        gpu_static: GpuStaticInfo | None = None,
        cores: int | None = None,
    ) -> None:
        """
        Initialize the Monitor.

        Args:
            config: Session settings. Defaults to MonitorConfig().
            host_sampler: Host counter reader.
            scanner: Callable returning a ProcessScan, or None when processes
                cannot be enumerated.
            gpu_static: Pre-queried GPU description. Queried from nvidia-smi
                when omitted and GPU support is enabled.
            cores: Logical core count. Read from the host when omitted.
        """
        self._config = config or MonitorConfig()
        self._host = host_sampler or HostSampler()
        self._scan = scanner
        self._uid_min, self._uid_max = self._config.resolve_uid_range()
        self._cores = cores or core_count()
        if gpu_static is None:
            if self._config.gpu_enabled:
                gpu_static = query_static_info(self._config.gpu_command, self._config.gpu_timeout)
            else:
                gpu_static = GpuStaticInfo(available=False)
        self._gpu = gpu_static
        self._table = ProcessTable()
        self._host_counters: HostCounters | None = None
        self._cpu_percent = 0.0

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def uid_range(self) -> tuple[int, int]:
        return self._uid_min, self._uid_max

    @property
    def gpu(self) -> GpuStaticInfo:
        return self._gpu

    @property
    def cpu_percent(self) -> float:
        """Host-wide CPU usage from the last cycle."""
        return self._cpu_percent

    def processes(self) -> list[ProcessSnapshot]:
        """Read-only copy of the process table."""
        return self._table.snapshot()

    def sample(self) -> SystemSnapshot | None:
        """
        Run one sampling cycle.

        Returns None when the process list could not be read; the table is
        left as it was and the next cycle proceeds normally.
        """
        counters = self._host.read_host_counters()
        memory = self._host.read_memory()

        scan = self._scan()
        if scan is None:
            logger.warning("No process data this cycle")
            return None

        gpu_usage, gpu_processes = self._read_gpu()

        self._cpu_percent = host_cpu_percent(self._host_counters, counters, self._cpu_percent)
        if counters is not None:
            self._host_counters = counters

        reconcile(
            self._table,
            scan.pids,
            scan.readings,
            host_ticks=counters.total_ticks if counters is not None else None,
            memory_total_kb=memory.total_kb if memory is not None else 0,
        )
        merge_gpu_memory(self._table, gpu_processes)
        groups = group_processes(self._table.records(), self._uid_min, self._uid_max)

        return SystemSnapshot(
            cpu_percent=self._cpu_percent,
            core_count=self._cores,
            memory=memory,
            gpu=self._gpu,
            gpu_usage=gpu_usage,
            processes=self._table.snapshot(),
            groups=sort_groups(groups),
        )

    def _read_gpu(self) -> tuple[GpuDynamicInfo | None, dict[int, int] | None]:
        if not self._gpu.available:
            return None, None
        command = self._config.gpu_command
        timeout = self._config.gpu_timeout
        return (
            query_dynamic_info(self._gpu, command, timeout),
            query_process_memory(command, timeout),
        )

    def run(
        self,
        stop_event: threading.Event,
        on_snapshot: Callable[[SystemSnapshot], None],
        cycles: int | None = None,
    ) -> int:
        """
        Poll until ``stop_event`` is set, or for ``cycles`` iterations.

        The stop flag is only checked between cycles, so a cycle is never
        abandoned half-way. Returns the number of cycles run.
        """
        completed = 0
        while not stop_event.is_set():
            try:
                snapshot = self.sample()
            except Exception:
                logger.exception("Sampling cycle failed")
                snapshot = None
            if snapshot is not None:
                on_snapshot(snapshot)

            completed += 1
            if cycles is not None and completed >= cycles:
                break
            stop_event.wait(timeout=self._config.interval)
        return completed


class SystemMonitor:
    """
    Background driver for a Monitor.

    Runs in a separate daemon thread and pushes each SystemSnapshot to a
    thread-safe Queue. The thread is the only writer of the process table;
    consumers only ever see the frozen copies inside published snapshots.
    """

    def __init__(
        self,
        update_queue: Queue[SystemSnapshot],
        poll_rate: float = 1.0,
        config: MonitorConfig | None = None,
        monitor: Monitor | None = None,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            update_queue: Thread-safe queue to push updates to.
            poll_rate: How often to poll the system (in seconds). Default 1.0s.
            config: Settings for the Monitor built on first start.
            monitor: Use this Monitor instead of building one.
        """
        self._queue = update_queue
        self._poll_rate = max(0.1, poll_rate)
        self._config = config
        self._monitor = monitor
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        if self._monitor is None:
            # GPU detection can take a while, keep it off the caller's thread
            self._monitor = Monitor(self._config)

        while not self._stop_event.is_set():
            try:
                snapshot = self._monitor.sample()
                if snapshot is not None:
                    self._queue.put(snapshot)
            except Exception:
                logger.exception("Sampling cycle failed")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)
