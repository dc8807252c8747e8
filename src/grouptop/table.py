"""Process table and per-cycle reconciliation."""

from collections.abc import Iterator, Mapping, Set

from grouptop.models import HostCounters, ProcessReading, ProcessRecord, ProcessSnapshot


class ProcessTable:
    """
    Mapping of pid to the last-known ProcessRecord.

    Carried across sampling cycles and mutated only by reconcile() and the
    GPU merge. Readers should take snapshot() rather than hold records.
    """

    def __init__(self) -> None:
        self._records: dict[int, ProcessRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, pid: object) -> bool:
        return pid in self._records

    def __iter__(self) -> Iterator[int]:
        return iter(self._records)

    def __getitem__(self, pid: int) -> ProcessRecord:
        return self._records[pid]

    def get(self, pid: int) -> ProcessRecord | None:
        return self._records.get(pid)

    def records(self) -> list[ProcessRecord]:
        return list(self._records.values())

    def add(self, record: ProcessRecord) -> None:
        self._records[record.pid] = record

    def discard(self, pid: int) -> None:
        self._records.pop(pid, None)

    def snapshot(self) -> list[ProcessSnapshot]:
        """Return immutable copies of every record, ordered by pid."""
        return [ProcessSnapshot.from_record(self._records[pid]) for pid in sorted(self._records)]


def cpu_percent(ticks_now: int, ticks_prev: int, host_now: int, host_prev: int) -> float | None:
    """
    Share of host CPU time consumed between two samples.

    Returns None when no rate can be derived: the host delta is not positive
    or the process counter went backwards.
    """
    host_delta = host_now - host_prev
    proc_delta = ticks_now - ticks_prev
    if host_delta <= 0 or proc_delta < 0:
        return None
    return 100.0 * proc_delta / host_delta


def host_cpu_percent(
    previous: HostCounters | None,
    current: HostCounters | None,
    last_percent: float = 0.0,
) -> float:
    """
    Host-wide busy percentage between two counter reads.

    Keeps ``last_percent`` on the first sample and on counter anomalies.
    """
    if previous is None or current is None:
        return last_percent
    total_delta = current.total_ticks - previous.total_ticks
    idle_delta = current.idle_ticks - previous.idle_ticks
    if total_delta <= 0 or idle_delta < 0 or idle_delta > total_delta:
        return last_percent
    return 100.0 * (total_delta - idle_delta) / total_delta


def reconcile(
    table: ProcessTable,
    current_pids: Set[int],
    readings: Mapping[int, ProcessReading],
    *,
    host_ticks: int | None,
    memory_total_kb: int = 0,
) -> ProcessTable:
    """
    Merge a fresh process scan into the table.

    Args:
        table: Table from the previous cycle, updated in place and returned.
        current_pids: Every pid in the current OS listing.
        readings: Successful reads for this cycle, keyed by pid. A listed pid
            without a reading keeps its record untouched.
        host_ticks: Host cumulative tick total for this cycle, or None if no
            host reading exists yet.
        memory_total_kb: Host memory total used for memory percentages.
    """
    for pid in current_pids:
        reading = readings.get(pid)
        if reading is None:
            continue

        record = table.get(pid)
        host_stalled = False
        if record is None:
            record = ProcessRecord(pid=pid, uid=reading.uid, command=reading.command)
            table.add(record)
        elif host_ticks is None or host_ticks == record.sampled_host_ticks:
            # No host time elapsed since this record's baseline; keep it so
            # the next rate divides matching intervals.
            host_stalled = True
        elif record.sampled_host_ticks is not None:
            percent = cpu_percent(
                reading.cpu_ticks, record.cpu_ticks, host_ticks, record.sampled_host_ticks
            )
            if percent is not None:
                record.cpu_percent = percent

        record.rss_kb = reading.rss_kb
        if not host_stalled:
            record.cpu_ticks = reading.cpu_ticks
            record.sampled_host_ticks = host_ticks
        if memory_total_kb > 0:
            record.memory_percent = 100.0 * reading.rss_kb / memory_total_kb

    for pid in [pid for pid in table if pid not in current_pids]:
        table.discard(pid)

    return table
