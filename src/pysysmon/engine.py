"""Sampling engine and refresh loop for pysysmon."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from pysysmon.accounting import account
from pysysmon.config import DEFAULT_CONFIG, MonitorConfig
from pysysmon.counters import CounterSourceUnavailable, ProcfsCounterSource
from pysysmon.models import AccountedProcess, ProcessSample, SnapshotPair, SystemSample
from pysysmon.ranking import Pager, SortMetric, rank

logger = logging.getLogger(__name__)


class LoopState(Enum):
    """Phases of one refresh cycle."""

    SAMPLING = "sampling"
    ACCOUNTING = "accounting"
    RANKING = "ranking"
    RENDERING = "rendering"
    AWAITING_TICK = "awaiting_tick"
    STOPPED = "stopped"


class Command(Enum):
    """User commands accepted between cycles."""

    QUIT = "q"
    TOGGLE_SORT = "s"
    SCROLL_UP = "up"
    SCROLL_DOWN = "down"
    CHANGE_INTERVAL = "r"
    KILL = "k"

    @classmethod
    def from_key(cls, key: str | None) -> "Command | None":
        """Map a key name to a command, or None if the key is not bound."""
        if not key:
            return None
        try:
            return cls(key if len(key) > 1 else key.lower())
        except ValueError:
            return None


@dataclass(slots=True, frozen=True)
class Frame:
    """Everything the presentation shell needs to draw one cycle."""

    system: SystemSample
    processes: list[AccountedProcess]  # Visible window only
    total: int
    offset: int
    metric: SortMetric
    refresh_interval: float
    page_size_kb: int

    @property
    def selected_pid(self) -> int | None:
        """The pid at the top of the window."""
        return self.processes[0].pid if self.processes else None


class SnapshotStore:
    """Holds exactly two generations of system and process snapshots."""

    def __init__(self) -> None:
        self._system: SnapshotPair[SystemSample] = SnapshotPair()
        self._processes: SnapshotPair[dict[int, ProcessSample]] = SnapshotPair()

    @property
    def system(self) -> SnapshotPair[SystemSample]:
        return self._system

    @property
    def processes(self) -> SnapshotPair[dict[int, ProcessSample]]:
        return self._processes

    def push(self, system: SystemSample, processes: dict[int, ProcessSample]) -> None:
        """Make the given samples current and the old current previous."""
        self._system = self._system.rotate(system)
        self._processes = self._processes.rotate(processes)

    def clear(self) -> None:
        """Discard both generations."""
        self._system = SnapshotPair()
        self._processes = SnapshotPair()


class RefreshLoop:
    """
    Drives sampling, accounting and ranking on a fixed cadence.

    Everything runs on the caller's thread. Between cycles the loop waits on a
    single Event with a short timeout, polling for user commands in between,
    so keys stay responsive without a second thread.
    """

    def __init__(
        self,
        source: ProcfsCounterSource,
        config: MonitorConfig = DEFAULT_CONFIG,
        killer: Callable[[int], object] | None = None,
    ) -> None:
        """
        Initialize the RefreshLoop.

        Args:
            source: Counter source to sample each cycle.
            config: Cadence and engine settings.
            killer: Called with a pid for the KILL command. KILL is ignored
                when no killer is supplied.
        """
        self._source = source
        self._config = config
        self._killer = killer
        self._store = SnapshotStore()
        self._pager = Pager(config.page_size)
        self._metric = SortMetric.CPU
        self._accounted: list[AccountedProcess] = []
        self._state = LoopState.STOPPED
        self._stop_event = threading.Event()
        self._refresh_interval = config.refresh_interval
        self.refresh_interval = config.refresh_interval

    @property
    def source(self) -> ProcfsCounterSource:
        return self._source

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def metric(self) -> SortMetric:
        return self._metric

    @property
    def offset(self) -> int:
        return self._pager.offset

    @property
    def refresh_interval(self) -> float:
        """Get the current refresh interval."""
        return self._refresh_interval

    @refresh_interval.setter
    def refresh_interval(self, value: float) -> None:
        """Set the refresh interval."""
        self._refresh_interval = max(self._config.min_refresh_interval, value)

    @property
    def page_size(self) -> int:
        return self._pager.page_size

    @page_size.setter
    def page_size(self, value: int) -> None:
        self._pager.page_size = value
        self._pager.clamp(len(self._accounted))

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> Frame:
        """
        Run the first cycle.

        Raises:
            CounterSourceUnavailable: procfs cannot be read at all.
        """
        self._stop_event.clear()
        self._store.clear()
        return self._run_cycle()

    def cycle(self) -> Frame:
        """
        Run one Sampling, Accounting and Ranking pass.

        Once a first snapshot exists, an unreadable counter source skips the
        cycle and returns the last frame; the next tick reads again.
        """
        if self._store.system.current is None:
            return self.start()
        try:
            return self._run_cycle()
        except CounterSourceUnavailable as exc:
            logger.warning("skipping refresh cycle: %s", exc)
            self._state = LoopState.RENDERING
            return self.current_frame()

    def _run_cycle(self) -> Frame:
        self._state = LoopState.SAMPLING
        system = self._source.sample_system()
        processes = self._source.sample_processes()
        self._store.push(system, processes)

        self._state = LoopState.ACCOUNTING
        self._accounted = account(
            self._store.processes.current,
            self._store.processes.previous,
            self._store.system.current,
            self._store.system.previous,
            page_size_kb=self._source.page_size_kb,
            match_start_time=self._config.match_start_time,
        )
        logger.debug("accounted %d processes", len(self._accounted))

        self._state = LoopState.RANKING
        frame = self.current_frame()
        self._state = LoopState.RENDERING
        return frame

    def current_frame(self) -> Frame:
        """Re-rank and re-window the last accounted cycle without sampling."""
        system = self._store.system.current
        if system is None:
            raise RuntimeError("no snapshot has been taken yet")

        ranked = rank(self._accounted, self._metric)
        return Frame(
            system=system,
            processes=self._pager.window(ranked),
            total=len(ranked),
            offset=self._pager.offset,
            metric=self._metric,
            refresh_interval=self._refresh_interval,
            page_size_kb=self._source.page_size_kb,
        )

    def next_refresh_interval(self) -> float:
        """The preset following the current interval."""
        presets = sorted(self._config.refresh_intervals)
        for preset in presets:
            if preset > self._refresh_interval:
                return preset
        return presets[0]

    def dispatch(self, command: Command, selected_pid: int | None = None) -> bool:
        """
        Apply a user command to the loop state. Never re-samples.

        Args:
            command: The command to apply.
            selected_pid: Target of KILL. Defaults to the top visible row.

        Returns:
            True if the visible frame changed.
        """
        count = len(self._accounted)
        if command is Command.QUIT:
            self.stop()
            return False
        if command is Command.TOGGLE_SORT:
            self._metric = self._metric.toggled()
            return True
        if command is Command.SCROLL_UP:
            before = self._pager.offset
            return self._pager.scroll(-1, count) != before
        if command is Command.SCROLL_DOWN:
            before = self._pager.offset
            return self._pager.scroll(1, count) != before
        if command is Command.CHANGE_INTERVAL:
            self.refresh_interval = self.next_refresh_interval()
            logger.info("refresh interval set to %.1fs", self._refresh_interval)
            return True
        if command is Command.KILL:
            if selected_pid is None and self._store.system.current is not None:
                selected_pid = self.current_frame().selected_pid
            if selected_pid is not None and self._killer is not None:
                self._killer(selected_pid)
            return False
        return False

    def stop(self) -> None:
        """Request termination; observed at the next poll."""
        self._stop_event.set()

    def run(
        self,
        poll_command: Callable[[], Command | None],
        render: Callable[[Frame], object],
    ) -> None:
        """
        Run until a QUIT command or stop().

        Args:
            poll_command: Non-blocking source of the next command, None if
                nothing is pending.
            render: Receives each new frame.
        """
        render(self.start())
        try:
            while not self._stop_event.is_set():
                self._await_tick(poll_command, render)
                if self._stop_event.is_set():
                    break
                render(self.cycle())
        finally:
            self._state = LoopState.STOPPED
            self._store.clear()
            self._accounted = []

    def _await_tick(
        self,
        poll_command: Callable[[], Command | None],
        render: Callable[[Frame], object],
    ) -> None:
        """Wait one refresh interval, handling commands as they arrive."""
        self._state = LoopState.AWAITING_TICK
        deadline = time.monotonic() + self._refresh_interval
        while not self._stop_event.is_set():
            command = poll_command()
            if command is not None and self.dispatch(command) and not self._stop_event.is_set():
                render(self.current_frame())
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            if command is None:
                self._stop_event.wait(timeout=min(self._config.poll_slice, remaining))
