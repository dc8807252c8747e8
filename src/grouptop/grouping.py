"""Ownership-based aggregation of the process table."""

from collections.abc import Iterable, Mapping

from grouptop.models import ProcessGroup, ProcessRecord

SYSTEM_GROUP = "system_processes"

# Groups under these thresholds are hidden unless all groups are requested.
MIN_CPU_PERCENT = 0.1
MIN_MEMORY_GB = 0.1


def group_name(uid: int, command: str, uid_min: int, uid_max: int) -> str:
    """
    Name of the group a process belongs to.

    Owners outside the normal-user range all share one system bucket,
    whatever the command; normal users are grouped by command.
    """
    if uid < uid_min or uid > uid_max:
        return SYSTEM_GROUP
    return command


def group_processes(records: Iterable[ProcessRecord], uid_min: int, uid_max: int) -> dict[str, ProcessGroup]:
    """Fold every record into its group. Recomputed from scratch on each call."""
    groups: dict[str, ProcessGroup] = {}
    for record in records:
        name = group_name(record.uid, record.command, uid_min, uid_max)
        group = groups.get(name)
        if group is None:
            group = groups[name] = ProcessGroup(name=name)
        group.count += 1
        group.rss_kb += record.rss_kb
        group.cpu_percent += record.cpu_percent
        group.gpu_memory_mb += record.gpu_memory_mb
    return groups


def sort_groups(groups: Mapping[str, ProcessGroup]) -> list[ProcessGroup]:
    """Groups ordered by descending score."""
    return sorted(groups.values(), key=lambda group: group.score, reverse=True)


def is_significant(group: ProcessGroup) -> bool:
    """Whether a group uses enough of anything to be worth showing."""
    return (
        group.cpu_percent > MIN_CPU_PERCENT
        or group.memory_gb > MIN_MEMORY_GB
        or group.gpu_memory_mb > 0
    )
