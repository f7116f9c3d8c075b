"""taskmon - Textual front-end."""

import argparse
import logging
from queue import Empty, Queue
from signal import Signals

from textual import work
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import DataTable, Footer, Input, OptionList, Sparkline, Static
from textual.widgets.option_list import Option

from taskmon.actions import SUPPORTED_SIGNALS
from taskmon.config import DEFAULT_HISTORY_CAPACITY, DEFAULT_POLL_INTERVAL_MS, MonitorOptions
from taskmon.errors import InvalidCriterion
from taskmon.filters import FilterCriterion, SortKey, match, parse_query, sort_records
from taskmon.models import KillReport, ProcessRecord, Snapshot
from taskmon.monitor import TaskMonitor
from taskmon.source import ProcessSource

logger = logging.getLogger(__name__)


def describe_report(report: KillReport, sig: Signals) -> str:
    """One-line summary of a kill report for notifications."""
    if not report.outcomes:
        return "No matching processes"
    if report.ok:
        return f"Sent {sig.name} to {len(report)} process(es)"
    reasons: dict[str, list[int]] = {}
    for outcome in report.failed:
        reasons.setdefault(outcome.failure_reason or "unknown error", []).append(outcome.pid)
    details = "; ".join(
        f"{reason}: {', '.join(str(pid) for pid in pids)}" for reason, pids in reasons.items()
    )
    return f"{sig.name}: {len(report.succeeded)}/{len(report)} succeeded ({details})"


class CpuGraph(Container):
    """Rolling graph of aggregate CPU usage."""

    DEFAULT_CSS = """
    CpuGraph {
        height: auto;
        padding: 0 1;
        background: $surface;
    }

    #cpu-sparkline {
        height: 3;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the graph layout."""
        yield Static("Loading CPU info...", id="cpu-label")
        yield Sparkline([], summary_function=max, id="cpu-sparkline")

    def update_history(self, values: list[float], window: float) -> None:
        """Redraw from the history values, oldest first."""
        try:
            self.query_one("#cpu-sparkline", Sparkline).data = values
            label = self.query_one("#cpu-label", Static)
        except Exception:
            return  # Widget not mounted yet
        if values:
            label.update(f"CPU {values[-1]:5.1f}%  (last {window:.0f}s)")


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: list[int] = []
        self._sort_key: SortKey = SortKey.PID
        self._sort_reverse: bool = False

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    @property
    def sort_reverse(self) -> bool:
        return self._sort_reverse

    @property
    def pids(self) -> list[int]:
        """PIDs currently shown, in display order."""
        return list(self._current_pids)

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        next_index = (current_index + 1) % len(keys)
        self._sort_key = keys[next_index]
        # CPU reads best highest first, everything else ascending
        self._sort_reverse = self._sort_key is SortKey.CPU
        return self._sort_key

    def toggle_order(self) -> bool:
        """Flip ascending/descending and return True if now descending."""
        self._sort_reverse = not self._sort_reverse
        return self._sort_reverse

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("OWNER", key="owner", width=12)
        table.add_column("CPU%", key="cpu", width=7)
        table.add_column("Name", key="name")

    def selected_pid(self) -> int | None:
        """PID of the row under the cursor."""
        table = self.query_one("#process-table", DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return int(row_key.value)

    def update_processes(self, records: list[ProcessRecord] | tuple[ProcessRecord, ...]) -> None:
        """
        Replace the table contents with ``records``.

        The cursor stays on the same PID when that process is still listed.
        """
        table = self.query_one("#process-table", DataTable)
        selected = self.selected_pid()

        ordered = sort_records(records, self._sort_key, self._sort_reverse)
        table.clear()
        for record in ordered:
            table.add_row(
                str(record.pid),
                record.owner[:12],
                f"{record.cpu_percent:5.1f}",
                record.name,
                key=str(record.pid),
            )
        self._current_pids = [record.pid for record in ordered]

        if selected is not None and selected in self._current_pids:
            table.move_cursor(row=self._current_pids.index(selected))


class SignalPicker(ModalScreen[Signals | None]):
    """Modal list of the platform's supported signals. Dismisses with the choice."""

    DEFAULT_CSS = """
    SignalPicker {
        align: center middle;
    }

    #signal-dialog {
        width: 40;
        height: auto;
        max-height: 80%;
        border: thick $primary;
        background: $surface;
        padding: 0 1;
    }

    #signal-list {
        height: auto;
        max-height: 16;
    }
    """

    BINDINGS = [("escape", "cancel", "Cancel")]

    def __init__(self, title: str) -> None:
        super().__init__()
        self._title = title

    def compose(self) -> ComposeResult:
        with Vertical(id="signal-dialog"):
            yield Static(self._title, id="signal-title")
            yield OptionList(
                *(Option(sig.name, id=sig.name) for sig in SUPPORTED_SIGNALS),
                id="signal-list",
            )

    def on_mount(self) -> None:
        options = self.query_one("#signal-list", OptionList)
        options.highlighted = 0
        options.focus()

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        self.dismiss(Signals[event.option.id])

    def action_cancel(self) -> None:
        self.dismiss(None)


class TaskmonApp(App):
    """Main taskmon application."""

    TITLE = "taskmon"
    SUB_TITLE = "Process Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #cpu-graph {
        dock: top;
    }

    #search-bar {
        height: auto;
    }

    #search {
        width: 1fr;
    }

    #search-status {
        width: auto;
        padding: 1 1 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("f7", "order", "Order"),
        ("slash", "search", "Search"),
        ("escape", "leave_search", "Table"),
        ("f2", "toggle_regex", "Regex"),
        ("f3", "toggle_case", "Case"),
        ("t", "terminate", "Terminate"),
        ("k", "kill", "Kill"),
        ("s", "kill_with", "Kill with"),
        ("a", "kill_all", "Kill all"),
        ("x", "kill_all_with", "Kill all with"),
    ]

    def __init__(
        self,
        options: MonitorOptions | None = None,
        source: ProcessSource | None = None,
    ) -> None:
        """Initialize the TaskmonApp."""
        super().__init__()
        self._update_queue: Queue[Snapshot] = Queue()
        self._monitor = TaskMonitor(options, source=source, update_queue=self._update_queue)
        self._snapshot: Snapshot | None = None
        self._query = ""
        self._criteria: list[FilterCriterion] = []
        self._regex = False
        self._case_sensitive = False

    @property
    def monitor(self) -> TaskMonitor:
        return self._monitor

    @property
    def criteria(self) -> list[FilterCriterion]:
        """Criteria from the last valid search query."""
        return list(self._criteria)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield CpuGraph(id="cpu-graph")
        yield Horizontal(
            Input(placeholder='Search, e.g. pid:643 owner:root name:"firefox"', id="search"),
            Static(self._flags_text(), id="search-status"),
            id="search-bar",
        )
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the sampler when the app is mounted."""
        self._monitor.start()
        self.query_one("#process-table", DataTable).focus()
        # Set up a timer to poll the queue for updates
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Check the queue for new snapshots and refresh the UI."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self._snapshot = snapshot
            self._refresh_table()
        self._refresh_graph()

        failed = self._monitor.sampler.failed_ticks
        self.sub_title = f"Process Monitor ({failed} failed updates)" if failed else "Process Monitor"

    def show_snapshot(self, snapshot: Snapshot) -> None:
        """Display ``snapshot`` immediately, bypassing the update queue."""
        self._snapshot = snapshot
        self._refresh_table()

    def _refresh_table(self) -> None:
        if self._snapshot is None:
            return
        records = match(self._snapshot, self._criteria)
        self.query_one(ProcessTable).update_processes(records)

    def _refresh_graph(self) -> None:
        history = self._monitor.history
        self.query_one(CpuGraph).update_history(history.values(), history.window())

    def _flags_text(self) -> str:
        regex = "on" if self._regex else "off"
        case = "on" if self._case_sensitive else "off"
        return f"regex:{regex} case:{case}"

    def _set_status(self, text: str) -> None:
        self.query_one("#search-status", Static).update(text)

    def apply_query(self, text: str) -> bool:
        """
        Parse ``text`` and filter the table with it.

        An invalid query leaves the previous filter in place and reports the
        error in the status line. Returns True if the query was accepted.
        """
        self._query = text
        try:
            self._criteria = parse_query(text, regex=self._regex, case_sensitive=self._case_sensitive)
        except InvalidCriterion as exc:
            self._set_status(f"[red]{exc}[/red]")
            return False
        self._set_status(self._flags_text())
        self._refresh_table()
        return True

    def on_input_changed(self, event: Input.Changed) -> None:
        """Filter as the user types."""
        self.apply_query(event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.query_one("#process-table", DataTable).focus()

    def action_sort(self) -> None:
        """Cycle through sort keys."""
        process_table = self.query_one(ProcessTable)
        new_sort_key = process_table.cycle_sort()
        self._refresh_table()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_order(self) -> None:
        descending = self.query_one(ProcessTable).toggle_order()
        self._refresh_table()
        self.notify("Order: descending" if descending else "Order: ascending")

    def action_search(self) -> None:
        self.query_one("#search", Input).focus()

    def action_leave_search(self) -> None:
        self.query_one("#process-table", DataTable).focus()

    def action_toggle_regex(self) -> None:
        self._regex = not self._regex
        self.apply_query(self._query)

    def action_toggle_case(self) -> None:
        self._case_sensitive = not self._case_sensitive
        self.apply_query(self._query)

    def _selected_or_warn(self) -> int | None:
        pid = self.query_one(ProcessTable).selected_pid()
        if pid is None:
            self.notify("No process selected", severity="warning")
        return pid

    def _criteria_or_warn(self) -> list[FilterCriterion] | None:
        if not self._criteria:
            self.notify("Refusing to kill everything: enter a search first", severity="warning")
            return None
        return list(self._criteria)

    @work(thread=True, group="signals")
    def signal_pid(self, pid: int, sig: Signals) -> None:
        """Send ``sig`` to ``pid`` off the event loop and report the result."""
        outcome = self._monitor.kill_pid(pid, sig)
        if outcome.succeeded:
            self.call_from_thread(self.notify, f"Sent {sig.name} to {pid}")
        else:
            self.call_from_thread(
                self.notify, f"{sig.name} to {pid} failed: {outcome.failure_reason}", severity="error"
            )

    @work(thread=True, group="signals")
    def signal_matches(self, criteria: list[FilterCriterion], sig: Signals) -> None:
        """Send ``sig`` to every process matching ``criteria`` off the event loop."""
        report = self._monitor.kill_matching(criteria, sig)
        severity = "information" if report.ok else "error"
        self.call_from_thread(self.notify, describe_report(report, sig), severity=severity)

    def action_terminate(self) -> None:
        """Send TERM to the selected process."""
        pid = self._selected_or_warn()
        if pid is not None:
            self.signal_pid(pid, Signals.SIGTERM)

    def action_kill(self) -> None:
        """Send KILL to the selected process."""
        pid = self._selected_or_warn()
        if pid is not None:
            self.signal_pid(pid, Signals.SIGKILL)

    def action_kill_with(self) -> None:
        """Pick a signal for the selected process."""
        pid = self._selected_or_warn()
        if pid is None:
            return

        def chosen(sig: Signals | None) -> None:
            if sig is not None:
                self.signal_pid(pid, sig)

        self.push_screen(SignalPicker(f"Send to PID {pid}"), chosen)

    def action_kill_all(self) -> None:
        """Send KILL to every process matching the current search."""
        criteria = self._criteria_or_warn()
        if criteria is not None:
            self.signal_matches(criteria, Signals.SIGKILL)

    def action_kill_all_with(self) -> None:
        """Pick a signal for every process matching the current search."""
        criteria = self._criteria_or_warn()
        if criteria is None:
            return

        def chosen(sig: Signals | None) -> None:
            if sig is not None:
                self.signal_matches(criteria, sig)

        self.push_screen(SignalPicker(f"Send to all matching {self._query!r}"), chosen)

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()

    def on_unmount(self) -> None:
        self._monitor.stop()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="taskmon", description="Lightweight process monitor.")
    parser.add_argument(
        "--interval",
        type=int,
        default=DEFAULT_POLL_INTERVAL_MS,
        metavar="MS",
        help="update interval in milliseconds (default: %(default)s)",
    )
    parser.add_argument(
        "--history",
        type=int,
        default=DEFAULT_HISTORY_CAPACITY,
        metavar="N",
        help="number of CPU samples kept for the graph (default: %(default)s)",
    )
    parser.add_argument("--log-file", metavar="PATH", help="write debug logs to PATH")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point for taskmon application."""
    args = parse_args(argv)
    if args.log_file:
        logging.basicConfig(
            filename=args.log_file,
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    try:
        options = MonitorOptions(poll_interval_ms=args.interval, history_capacity=args.history)
    except ValueError as exc:
        raise SystemExit(f"taskmon: {exc}") from exc

    logger.info("Starting with %s", options)
    app = TaskmonApp(options)
    app.run()


if __name__ == "__main__":
    main()
