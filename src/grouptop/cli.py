"""Command line entry point for grouptop."""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from grouptop.app import GrouptopApp
from grouptop.config import DEFAULT_INTERVAL, MonitorConfig
from grouptop.gpu import DEFAULT_COMMAND
from grouptop.grouping import is_significant
from grouptop.monitor import Monitor, SystemSnapshot

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
CLEAR_SCREEN = "\033[2J\033[H"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="grouptop",
        description="Live memory, CPU and GPU usage grouped by owner and command.",
    )
    parser.add_argument("--interval", type=float, default=DEFAULT_INTERVAL, help="seconds between samples")
    parser.add_argument("--uid-min", type=int, help="lowest normal-user uid (default: UID_MIN from login.defs)")
    parser.add_argument("--uid-max", type=int, help="highest normal-user uid (default: UID_MAX from login.defs)")
    parser.add_argument("--no-gpu", action="store_true", help="skip nvidia-smi queries")
    parser.add_argument("--gpu-command", default=DEFAULT_COMMAND, help="nvidia-smi executable")
    parser.add_argument("--all", action="store_true", dest="show_all", help="also show idle groups")
    parser.add_argument("--plain", action="store_true", help="print plain text instead of the interactive UI")
    parser.add_argument("--cycles", type=int, help="exit after this many samples (requires --plain)")
    parser.add_argument("--log-file", type=Path, help="write log messages to this file")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="log verbosity",
    )
    args = parser.parse_args(argv)
    if args.cycles is not None and not args.plain:
        parser.error("--cycles requires --plain")
    return args


def config_from_args(args: argparse.Namespace) -> MonitorConfig:
    return MonitorConfig(
        interval=args.interval,
        uid_min=args.uid_min,
        uid_max=args.uid_max,
        gpu_enabled=not args.no_gpu,
        gpu_command=args.gpu_command,
        show_all=args.show_all,
    )


def configure_logging(level: str, log_file: Path | None = None, console: bool = False) -> None:
    """
    Set up the root logger.

    The interactive UI owns the terminal, so without a log file nothing is
    written unless ``console`` is set.
    """
    handlers: list[logging.Handler] = []
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file))
    elif console:
        handlers.append(logging.StreamHandler(sys.stderr))
    else:
        handlers.append(logging.NullHandler())
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def format_report(snapshot: SystemSnapshot, show_all: bool = False) -> str:
    """Render one snapshot as plain text."""
    lines = []
    memory = snapshot.memory
    if memory is not None:
        lines.append(f"System Resources: RAM: {memory.total_gb:.2f} GB | {snapshot.core_count} CPU cores")
    else:
        lines.append(f"System Resources: {snapshot.core_count} CPU cores")

    gpu = snapshot.gpu
    if gpu.available:
        vram = ""
        if gpu.total_memory_mb > 0:
            vram = f" | VRAM: {gpu.total_memory_mb:.2f} MiB ({gpu.total_memory_gb:.2f} GB)"
        lines.append(f"GPU: {gpu.name}{vram} | Driver Version: {gpu.driver_version}")
    else:
        lines.append("GPU: No NVIDIA GPU detected")
    lines.append("")

    if memory is not None:
        lines.append(f"RAM used: {memory.used_percent:.2f}% ({memory.used_gb:.2f} GB) used")
    lines.append(f"CPU: {snapshot.cpu_percent:.2f}% used")
    usage = snapshot.gpu_usage
    if usage is not None:
        lines.append(
            f"GPU: VRAM {usage.memory_used_mb:.2f} MiB ({usage.memory_utilization_percent:.2f}%) used"
            f" | UTILIZATION: {usage.utilization_percent:.2f}%"
        )
    lines.append("")

    lines.append(f"{'GROUP':<20}{'PROCESSES':<10}{'RAM(GB)':<12}{'CPU%':<8}{'GPU MEM(MB)':<12}")
    lines.append("-" * 62)
    for group in snapshot.groups:
        if not show_all and not is_significant(group):
            continue
        gpu_mb = str(group.gpu_memory_mb) if group.gpu_memory_mb > 0 else ""
        lines.append(
            f"{group.name[:19]:<20}{group.count:<10}{group.memory_gb:<12.2f}"
            f"{group.cpu_percent:<8.2f}{gpu_mb:<12}"
        )
    return "\n".join(lines)


def run_plain(
    config: MonitorConfig,
    stop_event: threading.Event | None = None,
    cycles: int | None = None,
) -> int:
    """
    Print a report every interval until interrupted.

    SIGINT and SIGTERM only set the stop flag; the loop exits between cycles.
    Returns the number of cycles run.
    """
    stop_event = stop_event or threading.Event()

    def request_stop(signum, frame) -> None:
        stop_event.set()

    previous = {sig: signal.signal(sig, request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        monitor = Monitor(config)
        print("Process Monitor Running... Press Ctrl+C to exit")

        def show(snapshot: SystemSnapshot) -> None:
            print(CLEAR_SCREEN + "Process Monitor Running... Press Ctrl+C to exit\n")
            print(format_report(snapshot, config.show_all), flush=True)

        completed = monitor.run(stop_event, show, cycles=cycles)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print("\nProcess Monitor stopped.")
    return completed


def main(argv: list[str] | None = None) -> None:
    """Entry point for grouptop."""
    args = parse_args(argv)
    config = config_from_args(args)
    configure_logging(args.log_level, args.log_file, console=args.plain)
    logger.info("Starting grouptop (interval %.1fs, uid range %s)", config.interval, config.resolve_uid_range())

    if args.plain:
        run_plain(config, cycles=args.cycles)
        return

    GrouptopApp(config).run()


if __name__ == "__main__":
    main()
