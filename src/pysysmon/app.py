"""pysysmon - Main Textual application."""

import logging
import sys

import psutil
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.logging import TextualHandler
from textual.timer import Timer
from textual.widgets import DataTable, Footer, Static

from pysysmon.config import APP_NAME, DEFAULT_CONFIG
from pysysmon.counters import CounterSourceUnavailable, ProcfsCounterSource
from pysysmon.engine import Command, Frame, RefreshLoop

logger = logging.getLogger(__name__)


def format_kb(size: int) -> str:
    """Format kilobytes as human-readable string."""
    size = float(size)
    for unit in ["K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "K" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_ticks(ticks: int, clock_ticks: int) -> str:
    """Format CPU time as M:SS.hh, the way top shows TIME+."""
    hundredths = ticks * 100 // max(1, clock_ticks)
    minutes, rest = divmod(hundredths, 6000)
    seconds, hundredths = divmod(rest, 100)
    return f"{minutes}:{seconds:02d}.{hundredths:02d}"


def terminate_process(pid: int) -> bool:
    """Send SIGTERM to ``pid``. Returns False if it is gone or not ours."""
    try:
        psutil.Process(pid).terminate()
    except psutil.NoSuchProcess:
        logger.warning("cannot kill %d: no such process", pid)
        return False
    except psutil.AccessDenied:
        logger.warning("cannot kill %d: access denied", pid)
        return False
    logger.info("sent SIGTERM to %d", pid)
    return True


class HeaderStats(Static):
    """Header widget showing system counters and engine settings."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 4;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._frame: Frame | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_system_info(), id="system-info"),
            Static(self._get_view_info(), id="view-info"),
        )

    def update_stats(self, frame: Frame) -> None:
        """Update the statistics from a frame."""
        self._frame = frame
        try:
            self.query_one("#system-info", Static).update(self._get_system_info())
            self.query_one("#view-info", Static).update(self._get_view_info())
        except NoMatches:
            pass  # Widget not mounted yet

    def _get_system_info(self) -> str:
        if self._frame is None:
            return "Sampling..."
        system = self._frame.system
        bar_len = min(20, int(system.used_memory_percent / 5))
        mem_bar = "[cyan]█[/cyan]" * bar_len + "[dim]░[/dim]" * (20 - bar_len)
        return (
            f"CPUs: {system.cpu_count}  Total ticks: {system.total_ticks}\n"
            f"Mem\\[{mem_bar}] {system.used_memory_percent:5.1f}%\n"
            f"Total {format_kb(system.total_memory_kb)}  "
            f"Free {format_kb(system.free_memory_kb)}  "
            f"Avail {format_kb(system.available_memory_kb)}"
        )

    def _get_view_info(self) -> str:
        if self._frame is None:
            return ""
        frame = self._frame
        return (
            f"Sort: {frame.metric.value.upper()}\n"
            f"Refresh: {frame.refresh_interval:.1f}s\n"
            f"Tasks: {frame.total}"
        )


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, clock_ticks: int = 100, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._clock_ticks = clock_ticks
        self._current_pids: list[int] = []

    @property
    def visible_rows(self) -> int:
        """Rows available below the column header, 0 before layout."""
        table = self.query_one("#process-table", DataTable)
        return max(0, table.size.height - 1)

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        # Keys go to the app bindings, the first row is the selection
        table.can_focus = False

        table.add_column("PID", key="pid", width=8)
        table.add_column("S", key="state", width=3)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("RSS", key="rss", width=8)
        table.add_column("VIRT", key="virt", width=8)
        table.add_column("TIME+", key="time", width=10)
        table.add_column("Command", key="command")

    def update_processes(self, frame: Frame) -> None:
        """Replace the rows with the frame's visible window."""
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for proc in frame.processes:
            sample = proc.sample
            table.add_row(
                str(proc.pid),
                sample.state,
                f"{proc.cpu_percent:5.1f}",
                f"{proc.memory_percent:5.1f}",
                format_kb(proc.resident_memory_kb(frame.page_size_kb)),
                format_kb(sample.virtual_memory_bytes // 1024),
                format_ticks(sample.cpu_time_ticks, self._clock_ticks),
                proc.command[:80],
                key=str(proc.pid),
            )
        self._current_pids = [proc.pid for proc in frame.processes]


class SysmonApp(App):
    """Main pysysmon application."""

    TITLE = APP_NAME
    SUB_TITLE = "Process Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 4;
    }

    Horizontal {
        height: auto;
    }

    #system-info {
        width: 2fr;
        padding-right: 2;
    }

    #view-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "command('q')", "Quit"),
        ("s", "command('s')", "Sort CPU/MEM"),
        Binding("up", "command('up')", "Up", priority=True),
        Binding("down", "command('down')", "Down", priority=True),
        ("r", "command('r')", "Refresh time"),
        ("k", "command('k')", "Kill"),
    ]

    def __init__(self, engine: RefreshLoop | None = None) -> None:
        """
        Initialize the SysmonApp.

        Args:
            engine: Refresh loop to drive. Defaults to one reading the host
                procfs, started here so an unreadable procfs fails before
                the terminal is taken over.

        Raises:
            CounterSourceUnavailable: the default engine cannot read procfs.
        """
        super().__init__()
        if engine is None:
            source = ProcfsCounterSource(DEFAULT_CONFIG.procfs_root)
            engine = RefreshLoop(source, DEFAULT_CONFIG, killer=terminate_process)
            engine.start()
        # App._loop is Textual's asyncio loop
        self._engine = engine
        self._frame: Frame | None = None
        self._timer: Timer | None = None

    @property
    def engine(self) -> RefreshLoop:
        return self._engine

    @property
    def frame(self) -> Frame | None:
        """The most recently rendered frame."""
        return self._frame

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ProcessTable(clock_ticks=self._engine.source.clock_ticks)
        yield Footer()

    def on_mount(self) -> None:
        """Show the first frame once laid out and start the refresh timer."""
        self.call_after_refresh(self._show_first_frame)
        self._timer = self.set_interval(self._engine.refresh_interval, self._tick)

    def _show_first_frame(self) -> None:
        """Render the started engine's frame without taking another sample."""
        self._fit_page()
        if self._engine.store.system.current is None:
            frame = self._engine.start()
        else:
            frame = self._engine.current_frame()
        self._render_frame(frame)

    def _tick(self) -> None:
        """Re-sample on each timer tick."""
        self._fit_page()
        self._render_frame(self._engine.cycle())

    def _fit_page(self) -> None:
        rows = self.query_one(ProcessTable).visible_rows
        if rows > 0:
            self._engine.page_size = rows

    def _render_frame(self, frame: Frame) -> None:
        self._frame = frame
        self.query_one("#header-stats", HeaderStats).update_stats(frame)
        self.query_one(ProcessTable).update_processes(frame)

    def action_command(self, key: str) -> None:
        """Apply the command bound to ``key``."""
        command = Command.from_key(key)
        if command is None:
            return

        if command is Command.QUIT:
            self._engine.dispatch(command)
            if self._timer is not None:
                self._timer.stop()
            self.exit()
        elif command is Command.KILL:
            self._kill_selected()
        elif self._engine.dispatch(command) and self._frame is not None:
            self._render_frame(self._engine.current_frame())

        if command is Command.TOGGLE_SORT:
            self.notify(f"Sort: {self._engine.metric.value.upper()}")
        elif command is Command.CHANGE_INTERVAL:
            if self._timer is not None:
                self._timer.stop()
            self._timer = self.set_interval(self._engine.refresh_interval, self._tick)
            self.notify(f"Refresh: {self._engine.refresh_interval:.1f}s")

    def _kill_selected(self) -> None:
        """Terminate the selected (top) process."""
        if self._frame is None or self._frame.selected_pid is None:
            return
        pid = self._frame.selected_pid
        self._engine.dispatch(Command.KILL, selected_pid=pid)
        self.notify(f"Kill: {pid}")


def main() -> None:
    """Entry point for the pysysmon application."""
    logging.basicConfig(level=logging.INFO, handlers=[TextualHandler()])

    try:
        app = SysmonApp()
    except CounterSourceUnavailable as exc:
        print(f"{APP_NAME}: {exc}", file=sys.stderr)
        sys.exit(1)
    app.run()


if __name__ == "__main__":
    main()
