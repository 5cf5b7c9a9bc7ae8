"""procfinger - Textual process-tree inspector."""

import argparse
import logging
from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.widgets import DataTable, Footer, Static

from procfinger.finger import ProcessFinger
from procfinger.models import FingerSettings, ProcessSnapshot
from procfinger.monitor import TreeMonitor, TreeSnapshot

logger = logging.getLogger("procfinger.app")


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    NAME = "name"


def format_bytes(size: int | None) -> str:
    """Format bytes as human-readable string."""
    if size is None:
        return "    -"
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{size:5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_percent(value: float | None) -> str:
    return "    -" if value is None else f"{value:5.1f}"


def process_state(proc: ProcessSnapshot) -> str:
    return "Z" if proc.zombie else "-"


class ProcessDetails(Static):
    """Header widget describing the root process."""

    DEFAULT_CSS = """
    ProcessDetails {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._root: ProcessSnapshot | None = None
        self._root_pid: int | None = None
        self._is_root_user: bool = False

    @property
    def root(self) -> ProcessSnapshot | None:
        return self._root

    def update_details(
        self, snapshot: TreeSnapshot, root_pid: int, is_root_user: bool = False
    ) -> None:
        """Update the details from a tree snapshot."""
        self._root = snapshot.root
        self._root_pid = root_pid
        self._is_root_user = is_root_user
        self.update(self._render_details())

    def _render_details(self) -> str:
        if self._root is None:
            if self._root_pid is None:
                return "Loading process info..."
            return f"PID {self._root_pid}: [red]not running[/red]"

        root = self._root
        privilege = "[red]root[/red]" if self._is_root_user else "user"
        return (
            f"PID {root.pid}  {root.name or '?'}  (parent {root.parent_pid or '-'})\n"
            f"Script: {root.script_path or '-'}\n"
            f"Mem {format_bytes(root.memory_rss)}  CPU {format_percent(root.cpu_percent)}%  "
            f"Children {len(root.children)}\n"
            f"Running as: {privilege}"
        )


class ProcessTable(DataTable):
    """One row per process in the watched tree."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    # (key, label, width); a width of None lets the column fill the rest
    COLUMNS = (
        ("pid", "PID", 8),
        ("state", "S", 3),
        ("cpu", "CPU%", 8),
        ("rss", "RES", 8),
        ("name", "Name", 16),
        ("script", "Script", None),
    )

    # Sort key -> (row ordering, descending)
    ORDERING = {
        SortKey.CPU: (lambda p: p.cpu_percent or 0.0, True),
        SortKey.MEM: (lambda p: p.memory_rss or 0, True),
        SortKey.PID: (lambda p: p.pid, False),
        SortKey.NAME: (lambda p: (p.name or "").lower(), False),
    }

    def __init__(self, *args, **kwargs) -> None:
        kwargs.setdefault("cursor_type", "row")
        super().__init__(*args, **kwargs)
        self._shown: dict[int, ProcessSnapshot] = {}
        self._order_by = SortKey.CPU

    @property
    def sort_key(self) -> SortKey:
        return self._order_by

    @property
    def shown_pids(self) -> set[int]:
        """PIDs that currently have a row."""
        return set(self._shown)

    def cycle_sort(self) -> SortKey:
        """Move to the next sort key and return it."""
        order = list(SortKey)
        self._order_by = order[(order.index(self._order_by) + 1) % len(order)]
        return self._order_by

    def on_mount(self) -> None:
        for key, label, width in self.COLUMNS:
            self.add_column(label, key=key, width=width)

    def selected_pid(self) -> int | None:
        """PID of the row under the cursor, if any."""
        if not self.row_count:
            return None
        row_key, _ = self.coordinate_to_cell_key(self.cursor_coordinate)
        return int(row_key.value) if row_key.value is not None else None

    def update_processes(self, processes: list[ProcessSnapshot]) -> None:
        """
        Show the given processes.

        Rows of processes that are still present are edited in place so the
        cursor stays on the same process; new processes are appended in sort
        order and vanished ones removed.
        """
        latest = {proc.pid: proc for proc in processes}
        for pid in self._shown.keys() - latest.keys():
            self.remove_row(str(pid))

        ordering, descending = self.ORDERING[self._order_by]
        for proc in sorted(processes, key=ordering, reverse=descending):
            row_key = str(proc.pid)
            cells = self._cells(proc)
            if proc.pid in self._shown:
                for (column, _, _), value in zip(self.COLUMNS, cells):
                    self.update_cell(row_key, column, value)
            else:
                self.add_row(*cells, key=row_key)

        self._shown = latest

    @staticmethod
    def _cells(proc: ProcessSnapshot) -> tuple[str, ...]:
        return (
            str(proc.pid),
            process_state(proc),
            format_percent(proc.cpu_percent),
            format_bytes(proc.memory_rss),
            (proc.name or "?")[:16],
            (proc.script_path or "")[-60:],
        )


class ProcessFingerApp(App):
    """Inspector for one process and its children."""

    TITLE = "procfinger"
    SUB_TITLE = "Process Inspector"

    CSS = """
    Screen {
        layout: vertical;
    }

    #process-details {
        dock: top;
        height: auto;
        min-height: 6;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("k", "terminate", "Terminate"),
        ("K", "force_kill", "Kill"),
    ]

    def __init__(
        self,
        root_pid: int | None = None,
        poll_rate: float = 2.0,
        finger: ProcessFinger | None = None,
    ) -> None:
        """Initialize the ProcessFingerApp."""
        super().__init__()
        self._finger = finger or ProcessFinger()
        self._update_queue: Queue[TreeSnapshot] = Queue()
        self._monitor = TreeMonitor(
            self._update_queue, finger=self._finger, root_pid=root_pid, poll_rate=poll_rate
        )
        self._is_root_user = self._finger.is_running_as_root()

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield ProcessDetails(id="process-details")
        yield ProcessTable(id="process-table")
        yield Footer()

    def on_mount(self) -> None:
        """Start the tree monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and show the most recent snapshot."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: TreeSnapshot) -> None:
        """Update the UI with the new tree snapshot."""
        try:
            details = self.query_one("#process-details", ProcessDetails)
            details.update_details(snapshot, self._monitor.root_pid, self._is_root_user)
            self.query_one(ProcessTable).update_processes(snapshot.processes)
        except Exception:
            logger.exception("Could not refresh the display")

    def action_sort(self) -> None:
        """Cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def _kill_selected(self, force: bool) -> None:
        pid = self.query_one(ProcessTable).selected_pid()
        if pid is None:
            self.notify("No process selected", severity="warning")
            return
        if pid == self._finger.get_current_id():
            self.notify("Refusing to kill procfinger itself", severity="warning")
            return
        if self._finger.kill(pid, force=force):
            self.notify(f"{'Killed' if force else 'Terminated'} PID {pid}")
        else:
            self.notify(f"Could not signal PID {pid}", severity="error")

    def action_terminate(self) -> None:
        self._kill_selected(force=False)

    def action_force_kill(self) -> None:
        self._kill_selected(force=True)

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procfinger", description="Inspect a process and its children."
    )
    parser.add_argument("pid", nargs="?", type=int, help="process to inspect (default: parent shell)")
    parser.add_argument("--poll-rate", type=float, default=2.0, help="seconds between refreshes")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="log verbosity",
    )
    parser.add_argument("--log-file", help="write logs to this file (the terminal is left alone)")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for procfinger."""
    args = build_parser().parse_args(argv)
    if args.log_file:
        logging.basicConfig(
            filename=args.log_file,
            level=args.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    finger = ProcessFinger(settings=FingerSettings.from_env())
    root_pid = args.pid if args.pid is not None else finger.get_parent_id()
    app = ProcessFingerApp(root_pid=root_pid, poll_rate=args.poll_rate, finger=finger)
    app.run()


if __name__ == "__main__":
    main()
