"""Tests for the Monitor engine and the SystemMonitor thread."""

import threading
from queue import Queue

import pytest

from conftest import Sequence, make_reading, make_scan
from grouptop import monitor as monitor_module
from grouptop.config import MonitorConfig
from grouptop.grouping import SYSTEM_GROUP
from grouptop.models import GpuDynamicInfo, GpuStaticInfo, HostCounters, MemoryInfo, ProcessSnapshot
from grouptop.monitor import Monitor, SystemMonitor, SystemSnapshot
from grouptop.sampling import HostSampler

NO_GPU = GpuStaticInfo(available=False)
CONFIG = MonitorConfig(uid_min=1000, uid_max=60000, gpu_enabled=False, interval=0.1)


def make_monitor(counters, scans, memory=MemoryInfo(8 * 1024 * 1024, 4 * 1024 * 1024), gpu=NO_GPU):
    sampler = HostSampler(cpu_source=Sequence(*counters), memory_source=Sequence(memory))
    return Monitor(CONFIG, host_sampler=sampler, scanner=Sequence(*scans), gpu_static=gpu, cores=4)


class TestSystemSnapshot:
    """Tests for SystemSnapshot dataclass."""

    def test_system_snapshot_creation(self):
        snapshot = SystemSnapshot(
            cpu_percent=40.0,
            core_count=8,
            memory=MemoryInfo(total_kb=16 * 1024 * 1024, available_kb=8 * 1024 * 1024),
            gpu=NO_GPU,
        )
        assert snapshot.cpu_percent == 40.0
        assert snapshot.memory.used_percent == pytest.approx(50.0)
        assert snapshot.processes == []
        assert snapshot.groups == []

    def test_system_snapshot_uses_slots(self):
        """Test SystemSnapshot uses __slots__ for memory efficiency."""
        snapshot = SystemSnapshot(cpu_percent=0.0, core_count=1, memory=None, gpu=NO_GPU)
        # Slots-based dataclasses don't have __dict__
        assert not hasattr(snapshot, "__dict__")


class TestMonitor:
    """Tests for one-cycle sampling with fake sources."""

    def test_end_to_end_example(self):
        monitor = make_monitor(
            [HostCounters(1000, 700), HostCounters(1100, 760)],
            [make_scan(make_reading(10, cpu_ticks=40)), make_scan(make_reading(10, cpu_ticks=70))],
        )

        first = monitor.sample()
        assert first.cpu_percent == 0.0
        assert first.processes[0].cpu_percent == 0.0

        second = monitor.sample()
        assert second.cpu_percent == pytest.approx(40.0)
        assert second.processes[0].cpu_percent == pytest.approx(30.0)
        assert monitor.cpu_percent == pytest.approx(40.0)

    def test_snapshot_contents(self):
        monitor = make_monitor(
            [HostCounters(1000, 700)],
            [
                make_scan(
                    make_reading(1, uid=0, command="systemd", rss_kb=1024),
                    make_reading(2, uid=1000, command="firefox", rss_kb=4096),
                    make_reading(3, uid=1000, command="firefox", rss_kb=4096),
                )
            ],
        )

        snapshot = monitor.sample()

        assert snapshot.core_count == 4
        assert snapshot.gpu is NO_GPU
        assert snapshot.gpu_usage is None
        assert [proc.pid for proc in snapshot.processes] == [1, 2, 3]
        assert all(isinstance(proc, ProcessSnapshot) for proc in snapshot.processes)
        assert [group.name for group in snapshot.groups] == ["firefox", SYSTEM_GROUP]
        assert snapshot.groups[0].count == 2
        assert snapshot.processes[1].memory_percent == pytest.approx(100 * 4096 / (8 * 1024 * 1024))

    def test_exited_process_leaves_table_and_groups(self):
        monitor = make_monitor(
            [HostCounters(1000, 700), HostCounters(1100, 760)],
            [
                make_scan(make_reading(10, command="a"), make_reading(11, command="b")),
                make_scan(make_reading(11, command="b")),
            ],
        )
        monitor.sample()

        snapshot = monitor.sample()

        assert [proc.pid for proc in snapshot.processes] == [11]
        assert [group.name for group in snapshot.groups] == ["b"]
        assert [proc.pid for proc in monitor.processes()] == [11]

    def test_enumeration_failure_is_no_data(self):
        monitor = make_monitor(
            [HostCounters(1000, 700), HostCounters(1100, 760), HostCounters(1200, 800)],
            [make_scan(make_reading(10, cpu_ticks=40)), None, make_scan(make_reading(10, cpu_ticks=140))],
        )
        monitor.sample()

        assert monitor.sample() is None
        assert [proc.pid for proc in monitor.processes()] == [10]

        snapshot = monitor.sample()
        assert snapshot.processes[0].cpu_percent == pytest.approx(100 * 100 / 200)
        assert snapshot.cpu_percent == pytest.approx(100 * (200 - 100) / 200)

    def test_host_read_failure_keeps_percentages(self):
        monitor = make_monitor(
            [HostCounters(1000, 700), HostCounters(1100, 760), OSError("busy")],
            [
                make_scan(make_reading(10, cpu_ticks=40)),
                make_scan(make_reading(10, cpu_ticks=70)),
                make_scan(make_reading(10, cpu_ticks=95)),
            ],
        )
        monitor.sample()
        monitor.sample()

        snapshot = monitor.sample()

        assert snapshot.cpu_percent == pytest.approx(40.0)
        assert snapshot.processes[0].cpu_percent == pytest.approx(30.0)

    def test_rate_recovers_after_host_read_failure(self):
        monitor = make_monitor(
            [HostCounters(1000, 700), HostCounters(1100, 750), OSError("busy"), HostCounters(1300, 850)],
            [make_scan(make_reading(10, cpu_ticks=ticks)) for ticks in (0, 50, 100, 150)],
        )
        monitor.sample()
        assert monitor.sample().processes[0].cpu_percent == pytest.approx(50.0)
        assert monitor.sample().processes[0].cpu_percent == pytest.approx(50.0)

        snapshot = monitor.sample()

        assert snapshot.processes[0].cpu_percent == pytest.approx(50.0)

    def test_garbled_gpu_output_keeps_cycle(self, tmp_path):
        tool = tmp_path / "nvidia-smi"
        tool.write_text("#!/bin/sh\nprintf 'GPU \\377\\376, 8192, 550\\n'\n")
        tool.chmod(0o755)
        config = MonitorConfig(uid_min=1000, uid_max=60000, gpu_command=str(tool), interval=0.1)

        snapshot = Monitor(config).sample()

        assert snapshot is not None
        assert snapshot.memory is not None
        assert snapshot.processes
        assert snapshot.gpu.available
        assert snapshot.gpu_usage is None

    def test_gpu_usage_merged(self, monkeypatch):
        gpu = GpuStaticInfo(available=True, name="Test GPU", total_memory_mb=8192.0, driver_version="1.0")
        dynamic = GpuDynamicInfo(utilization_percent=10.0, memory_used_mb=1024.0, memory_utilization_percent=12.5)
        usage = Sequence({10: 300, 999: 50}, {})
        monkeypatch.setattr(monitor_module, "query_dynamic_info", lambda static, command, timeout: dynamic)
        monkeypatch.setattr(monitor_module, "query_process_memory", lambda command, timeout: usage())
        monitor = make_monitor(
            [HostCounters(1000, 700)],
            [make_scan(make_reading(10, command="trainer"))],
            gpu=gpu,
        )

        snapshot = monitor.sample()
        assert snapshot.gpu_usage == dynamic
        assert snapshot.processes[0].gpu_memory_mb == 300
        assert snapshot.groups[0].gpu_memory_mb == 300

        snapshot = monitor.sample()
        assert snapshot.processes[0].gpu_memory_mb == 0

    def test_gpu_disabled_skips_detection(self, monkeypatch):
        def unexpected(*args, **kwargs):
            raise AssertionError("GPU should not be queried")

        monkeypatch.setattr(monitor_module, "query_static_info", unexpected)

        monitor = Monitor(CONFIG)

        assert not monitor.gpu.available
        assert monitor.uid_range == (1000, 60000)

    def test_run_for_fixed_cycles(self):
        monitor = make_monitor([HostCounters(1000, 700)], [make_scan(make_reading(10))])
        received = []

        completed = monitor.run(threading.Event(), received.append, cycles=3)

        assert completed == 3
        assert len(received) == 3

    def test_run_stops_when_flag_set(self):
        monitor = make_monitor([HostCounters(1000, 700)], [make_scan(make_reading(10))])
        stop_event = threading.Event()
        stop_event.set()

        assert monitor.run(stop_event, lambda snapshot: None) == 0

    def test_run_survives_failed_cycle(self):
        monitor = make_monitor(
            [HostCounters(1000, 700)],
            [RuntimeError("boom"), make_scan(make_reading(10))],
        )
        received = []

        completed = monitor.run(threading.Event(), received.append, cycles=2)

        assert completed == 2
        assert len(received) == 1

    def test_real_system_sample(self):
        monitor = Monitor(CONFIG)

        monitor.sample()
        snapshot = monitor.sample()

        assert snapshot is not None
        assert snapshot.memory.total_kb > 0
        assert len(snapshot.processes) > 0
        assert len(snapshot.groups) > 0
        assert 0.0 <= snapshot.cpu_percent <= 100.0


class TestSystemMonitor:
    """Tests for SystemMonitor class."""

    def test_monitor_creation(self):
        """Test SystemMonitor can be instantiated."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue)

        assert monitor.poll_rate == 1.0
        assert not monitor.is_running

    def test_monitor_custom_poll_rate(self):
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=2.0)

        assert monitor.poll_rate == 2.0

    def test_poll_rate_minimum(self):
        """Test poll rate has a minimum value."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue)

        monitor.poll_rate = 0.01  # Very small value
        assert monitor.poll_rate >= 0.1  # Should be clamped to minimum

    def test_monitor_start_stop(self):
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, config=CONFIG)

        assert not monitor.is_running

        monitor.start()
        assert monitor.is_running

        monitor.stop()
        assert not monitor.is_running

    def test_monitor_start_idempotent(self):
        """Test starting an already running monitor is safe."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, config=CONFIG)

        monitor.start()
        thread1 = monitor._thread

        monitor.start()  # Should not create a new thread
        thread2 = monitor._thread

        assert thread1 is thread2
        monitor.stop()

    def test_monitor_publishes_snapshots(self):
        queue: Queue[SystemSnapshot] = Queue()
        fake = make_monitor(
            [HostCounters(1000, 700), HostCounters(1100, 760)],
            [make_scan(make_reading(10, cpu_ticks=40)), make_scan(make_reading(10, cpu_ticks=70))],
        )
        monitor = SystemMonitor(queue, poll_rate=0.1, monitor=fake)

        monitor.start()
        try:
            queue.get(timeout=2.0)
            snapshot = queue.get(timeout=2.0)
            assert snapshot.processes[0].cpu_percent == pytest.approx(30.0)
        finally:
            monitor.stop()

    def test_monitor_skips_cycles_without_data(self):
        queue: Queue[SystemSnapshot] = Queue()
        fake = make_monitor([HostCounters(1000, 700)], [None, None, make_scan(make_reading(10))])
        monitor = SystemMonitor(queue, poll_rate=0.1, monitor=fake)

        monitor.start()
        try:
            snapshot = queue.get(timeout=2.0)
            assert [proc.pid for proc in snapshot.processes] == [10]
        finally:
            monitor.stop()

    def test_monitor_collects_real_data(self):
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, config=CONFIG)

        monitor.start()
        try:
            snapshot = queue.get(timeout=5.0)
            assert isinstance(snapshot, SystemSnapshot)
            assert snapshot.memory.total_kb > 0
            assert len(snapshot.processes) > 0
        finally:
            monitor.stop()

    def test_daemon_thread(self):
        """Test monitor thread is a daemon thread."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, config=CONFIG)

        monitor.start()

        try:
            assert monitor._thread is not None
            assert monitor._thread.daemon is True
            assert monitor._thread.name == "SystemMonitor"
        finally:
            monitor.stop()
