"""grouptop - Main Textual application."""

import logging
from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Static

from grouptop.config import MonitorConfig
from grouptop.grouping import is_significant
from grouptop.models import ProcessGroup
from grouptop.monitor import SystemMonitor, SystemSnapshot

logger = logging.getLogger(__name__)


class SortKey(Enum):
    """Sort keys for the group table."""

    SCORE = "score"
    CPU = "cpu"
    MEM = "mem"
    GPU = "gpu"
    NAME = "name"


def usage_bar(percent: float, color: str, width: int = 20) -> str:
    """Render a percentage as a fixed-width markup bar."""
    filled = min(width, max(0, int(percent * width / 100)))
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (width - filled)


class HeaderStats(Static):
    """Header widget showing host CPU, memory and GPU statistics."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._snapshot: SystemSnapshot | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_host_info(), id="host-info"),
            Static(self._get_gpu_info(), id="gpu-info"),
        )

    def update_stats(self, snapshot: SystemSnapshot) -> None:
        """Update the statistics from a system snapshot."""
        self._snapshot = snapshot
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        try:
            self.query_one("#host-info", Static).update(self._get_host_info())
            self.query_one("#gpu-info", Static).update(self._get_gpu_info())
        except Exception:
            pass  # Widget not mounted yet

    def _get_host_info(self) -> str:
        """Get CPU and RAM display."""
        snapshot = self._snapshot
        if snapshot is None or snapshot.memory is None:
            return "Loading system info..."
        memory = snapshot.memory
        # Use escaped brackets for the bar containers
        return (
            f"RAM: {memory.total_gb:.2f} GB | {snapshot.core_count} CPU cores\n"
            f"Mem\\[{usage_bar(memory.used_percent, 'cyan')}] "
            f"{memory.used_percent:5.1f}% ({memory.used_gb:.2f} GB)\n"
            f"CPU\\[{usage_bar(snapshot.cpu_percent, 'green')}] {snapshot.cpu_percent:5.1f}%"
        )

    def _get_gpu_info(self) -> str:
        """Get GPU display."""
        snapshot = self._snapshot
        if snapshot is None:
            return ""
        gpu = snapshot.gpu
        if not gpu.available:
            return "GPU: No NVIDIA GPU detected"
        lines = [
            f"GPU: {gpu.name}",
            f"VRAM: {gpu.total_memory_mb:.0f} MiB ({gpu.total_memory_gb:.2f} GB) | Driver {gpu.driver_version}",
        ]
        usage = snapshot.gpu_usage
        if usage is not None:
            lines.append(
                f"VRAM {usage.memory_used_mb:.0f} MiB ({usage.memory_utilization_percent:.1f}%) used"
                f" | Util\\[{usage_bar(usage.utilization_percent, 'magenta')}]"
                f" {usage.utilization_percent:5.1f}%"
            )
        return "\n".join(lines)


class GroupTable(Container):
    """Container for the process group data table."""

    DEFAULT_CSS = """
    GroupTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, show_all: bool = False, **kwargs) -> None:
        """Initialize GroupTable."""
        super().__init__(*args, **kwargs)
        self._current_groups: set[str] = set()
        self._groups: list[ProcessGroup] = []
        self._sort_key: SortKey = SortKey.SCORE
        self._sort_reverse: bool = True
        self._show_all = show_all

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    @property
    def show_all(self) -> bool:
        return self._show_all

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        next_index = (current_index + 1) % len(keys)
        self._sort_key = keys[next_index]
        # Names read best ascending, usage descending
        self._sort_reverse = self._sort_key is not SortKey.NAME
        return self._sort_key

    def toggle_show_all(self) -> bool:
        """Switch between significant and all groups."""
        self._show_all = not self._show_all
        return self._show_all

    def compose(self) -> ComposeResult:
        """Compose the group table."""
        yield DataTable(id="group-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#group-table", DataTable)
        table.cursor_type = "row"

        table.add_column("GROUP", key="group", width=20)
        table.add_column("PROCESSES", key="count", width=10)
        table.add_column("RAM(GB)", key="ram", width=10)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("GPU MEM(MB)", key="gpu", width=12)

    def update_groups(self, groups: list[ProcessGroup]) -> None:
        """
        Update the table with new group aggregates.

        Existing rows are updated with update_cell; rows for vanished groups
        are removed. Rows are then re-ordered by the current sort key.
        """
        table = self.query_one("#group-table", DataTable)
        self._groups = groups

        visible = [group for group in groups if self._show_all or is_significant(group)]
        new_names = {group.name for group in visible}

        for name in self._current_groups - new_names:
            try:
                table.remove_row(name)
            except Exception:
                pass  # Row may not exist

        for group in visible:
            if group.name in self._current_groups:
                self._update_row(table, group)
            else:
                self._add_row(table, group)

        self._current_groups = new_names
        self._sort_table(table)

    def redraw(self) -> None:
        """Re-apply the last groups with the current filter and sort key."""
        self.update_groups(self._groups)

    def _sort_table(self, table: DataTable) -> None:
        """Order rows by the current sort key."""
        column, key = {
            SortKey.SCORE: (("ram", "cpu", "gpu"), self._score_from_cells),
            SortKey.CPU: (("cpu",), lambda cpu: float(cpu)),
            SortKey.MEM: (("ram",), lambda ram: float(ram)),
            SortKey.GPU: (("gpu",), lambda gpu: int(gpu or 0)),
            SortKey.NAME: (("group",), lambda name: name.lower()),
        }[self._sort_key]
        try:
            table.sort(*column, key=key, reverse=self._sort_reverse)
        except Exception:
            pass  # Table may be empty or mid-update

    @staticmethod
    def _score_from_cells(row: tuple[str, str, str]) -> float:
        ram, cpu, gpu = row
        return float(ram) + float(cpu) + int(gpu or 0) / 2

    def _cells(self, group: ProcessGroup) -> tuple[str, str, str, str, str]:
        return (
            group.name[:19],
            str(group.count),
            f"{group.memory_gb:.2f}",
            f"{group.cpu_percent:.2f}",
            str(group.gpu_memory_mb) if group.gpu_memory_mb > 0 else "",
        )

    def _update_row(self, table: DataTable, group: ProcessGroup) -> None:
        """Update an existing row using update_cell for performance."""
        try:
            for column, value in zip(("group", "count", "ram", "cpu", "gpu"), self._cells(group)):
                table.update_cell(group.name, column, value)
        except Exception:
            pass  # Row may have been removed

    def _add_row(self, table: DataTable, group: ProcessGroup) -> None:
        """Add a new row to the table."""
        try:
            table.add_row(*self._cells(group), key=group.name)
        except Exception:
            pass  # Row may already exist


class GrouptopApp(App):
    """Main grouptop application."""

    TITLE = "grouptop"
    SUB_TITLE = "Grouped Process Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #host-info {
        width: 1fr;
        padding-right: 2;
    }

    #gpu-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("a", "toggle_all", "All groups"),
    ]

    def __init__(self, config: MonitorConfig | None = None, monitor: SystemMonitor | None = None) -> None:
        """Initialize the GrouptopApp."""
        super().__init__()
        self._config = config or MonitorConfig()
        self._update_queue: Queue[SystemSnapshot] = Queue()
        self._monitor = monitor or SystemMonitor(
            self._update_queue,
            poll_rate=self._config.interval,
            config=self._config,
        )

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield GroupTable(show_all=self._config.show_all)
        yield Footer()

    def on_mount(self) -> None:
        """Start the system monitor when the app is mounted."""
        self._monitor.start()
        # Set up a timer to poll the queue for updates
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Check the queue for system updates and refresh the UI."""
        # Drain the queue, only the most recent snapshot matters
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: SystemSnapshot) -> None:
        """Update the UI with the new system snapshot."""
        try:
            header = self.query_one("#header-stats", HeaderStats)
            header.update_stats(snapshot)
            group_table = self.query_one(GroupTable)
            group_table.update_groups(snapshot.groups)
        except Exception:
            logger.exception("Failed to refresh display")

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        group_table = self.query_one(GroupTable)
        new_sort_key = group_table.cycle_sort()
        group_table.redraw()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_toggle_all(self) -> None:
        """Show or hide groups with negligible usage."""
        group_table = self.query_one(GroupTable)
        shown = "all" if group_table.toggle_show_all() else "significant"
        group_table.redraw()
        self.notify(f"Showing {shown} groups")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()
