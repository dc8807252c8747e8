"""
NVIDIA GPU queries via nvidia-smi.

Every failure here (tool missing, no device, timeout, garbled output) means
"no GPU data", never an error for the caller.
"""

import logging
import re
import subprocess
from collections.abc import Mapping

from grouptop.models import GpuDynamicInfo, GpuStaticInfo
from grouptop.table import ProcessTable

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "nvidia-smi"
DEFAULT_TIMEOUT = 2.0

STATIC_QUERY = ["--query-gpu=name,memory.total,driver_version", "--format=csv,noheader,nounits"]
DYNAMIC_QUERY = ["--query-gpu=utilization.gpu,memory.used", "--format=csv,noheader,nounits"]

# "|    0   N/A  N/A      1234      G   /usr/lib/xorg/Xorg        215MiB |"
# GI/CI are N/A without MIG and numeric with it.
_PROCESS_ROW = re.compile(
    r"^\|\s*(?P<gpu>\d+)\s+\S+\s+\S+\s+(?P<pid>\d+)\s+\S+\s+.*?(?P<mem>\d+)MiB\s*\|\s*$"
)


def run_tool(args: list[str], command: str = DEFAULT_COMMAND, timeout: float = DEFAULT_TIMEOUT) -> str | None:
    """Run nvidia-smi and return its stdout, or None if it is unavailable."""
    try:
        result = subprocess.run(
            [command, *args],
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("%s %s unavailable: %s", command, " ".join(args), exc)
        return None
    return result.stdout


def parse_csv_row(line: str, fields: int) -> list[str] | None:
    """Split one ``--format=csv,noheader`` row into ``fields`` stripped values."""
    parts = [part.strip() for part in line.strip().split(",")]
    if len(parts) != fields or not all(parts):
        return None
    return parts


def parse_static_info(text: str) -> GpuStaticInfo:
    """Parse the first device of a name,memory.total,driver_version query."""
    lines = text.strip().splitlines()
    if not lines:
        return GpuStaticInfo(available=False)
    parts = parse_csv_row(lines[0], 3)
    if parts is None:
        return GpuStaticInfo(available=False)
    name, total, driver = parts
    try:
        total_mb = float(total)
    except ValueError:
        total_mb = 0.0
    return GpuStaticInfo(available=True, name=name, total_memory_mb=total_mb, driver_version=driver)


def parse_dynamic_info(text: str, static: GpuStaticInfo) -> GpuDynamicInfo | None:
    """Parse the first device of a utilization.gpu,memory.used query."""
    lines = text.strip().splitlines()
    if not lines:
        return None
    parts = parse_csv_row(lines[0], 2)
    if parts is None:
        return None
    try:
        utilization = float(parts[0])
    except ValueError:
        utilization = 0.0
    try:
        used_mb = float(parts[1])
    except ValueError:
        used_mb = 0.0
    memory_percent = 0.0
    if static.total_memory_mb > 0:
        memory_percent = 100.0 * used_mb / static.total_memory_mb
    return GpuDynamicInfo(
        utilization_percent=utilization,
        memory_used_mb=used_mb,
        memory_utilization_percent=memory_percent,
    )


def parse_process_table(text: str) -> dict[int, int]:
    """
    Extract per-process GPU memory from the plain nvidia-smi table.

    Only the "Processes:" section is read and it ends at the next border
    line. Rows that do not look like a process entry are skipped. A pid
    using several GPUs gets the sum of its usage.
    """
    usage: dict[int, int] = {}
    in_processes = False
    for line in text.splitlines():
        if not in_processes:
            in_processes = "Processes:" in line
            continue
        if line.startswith("+-"):
            break
        match = _PROCESS_ROW.match(line.rstrip())
        if match is None:
            continue
        pid = int(match["pid"])
        usage[pid] = usage.get(pid, 0) + int(match["mem"])
    return usage


def query_static_info(command: str = DEFAULT_COMMAND, timeout: float = DEFAULT_TIMEOUT) -> GpuStaticInfo:
    """Query device name, total memory and driver version."""
    output = run_tool(STATIC_QUERY, command, timeout)
    if output is None:
        return GpuStaticInfo(available=False)
    info = parse_static_info(output)
    if info.available:
        logger.info("GPU detected: %s (%.0f MiB, driver %s)", info.name, info.total_memory_mb, info.driver_version)
    return info


def query_dynamic_info(
    static: GpuStaticInfo,
    command: str = DEFAULT_COMMAND,
    timeout: float = DEFAULT_TIMEOUT,
) -> GpuDynamicInfo | None:
    """Query current utilization and memory use. None if there is no GPU."""
    if not static.available:
        return None
    output = run_tool(DYNAMIC_QUERY, command, timeout)
    if output is None:
        return None
    return parse_dynamic_info(output, static)


def query_process_memory(command: str = DEFAULT_COMMAND, timeout: float = DEFAULT_TIMEOUT) -> dict[int, int] | None:
    """Query GPU memory in MiB per pid. None if the tool is unavailable."""
    output = run_tool([], command, timeout)
    if output is None:
        return None
    return parse_process_table(output)


def merge_gpu_memory(table: ProcessTable, usage: Mapping[int, int] | None) -> None:
    """
    Overlay per-process GPU memory onto the table.

    Every record is zeroed first so processes that released the GPU do not
    keep a stale value. Pids not in the table are dropped.
    """
    for record in table.records():
        record.gpu_memory_mb = 0
    if not usage:
        return
    for pid, memory_mb in usage.items():
        record = table.get(pid)
        if record is not None:
            record.gpu_memory_mb = memory_mb
