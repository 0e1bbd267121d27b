"""Counter source reading raw process and system counters from procfs."""

import logging
import os
from collections.abc import Callable
from pathlib import Path

from pysysmon.models import ProcessSample, SystemSample

logger = logging.getLogger(__name__)


class CounterSourceUnavailable(RuntimeError):
    """The metrics interface itself cannot be read."""


def _to_int(token: str) -> int:
    """Parse an integer counter, substituting zero for garbage."""
    try:
        return int(token)
    except ValueError:
        return 0


# Offsets into /proc/<pid>/stat, counted from the first token after the
# closing parenthesis of the command name (the state letter is offset 0).
STAT_FIELDS: dict[str, tuple[int, Callable[[str], object]]] = {
    "state": (0, str),
    "utime": (11, _to_int),
    "stime": (12, _to_int),
    "cutime": (13, _to_int),
    "cstime": (14, _to_int),
    "starttime": (19, _to_int),
    "vsize": (20, _to_int),
    "rss": (21, _to_int),
}
STAT_MIN_FIELDS = 22

_MEMINFO_KEYS = {
    "MemTotal:": "total",
    "MemFree:": "free",
    "MemAvailable:": "available",
}


def parse_stat_line(line: str) -> tuple[str, dict[str, object]]:
    """
    Split a /proc/<pid>/stat record into its command name and counter fields.

    The command name may itself contain spaces and parentheses, so it is taken
    between the first '(' and the last ')'.

    Returns:
        ``(name, fields)``. ``fields`` is empty when the record is malformed
        (no parenthesized name, or fewer than STAT_MIN_FIELDS trailing
        tokens); individual fields that fail to parse are zero.
    """
    start = line.find("(")
    end = line.rfind(")")
    if start == -1 or end < start:
        return "", {}

    name = line[start + 1 : end]
    tokens = line[end + 1 :].split()
    if len(tokens) < STAT_MIN_FIELDS:
        return name, {}

    return name, {key: parse(tokens[offset]) for key, (offset, parse) in STAT_FIELDS.items()}


def parse_total_ticks(line: str) -> int:
    """Sum the tick categories of the aggregate 'cpu' line of /proc/stat."""
    return sum(_to_int(token) for token in line.split()[1:])


def parse_meminfo(lines) -> dict[str, int]:
    """Extract total/free/available kilobytes from a /proc/meminfo stream."""
    memory = {"total": 0, "free": 0, "available": 0}
    for line in lines:
        parts = line.split()
        if len(parts) >= 2 and parts[0] in _MEMINFO_KEYS:
            memory[_MEMINFO_KEYS[parts[0]]] = _to_int(parts[1])
    return memory


class ProcfsCounterSource:
    """
    Reads system-wide and per-process counters from a procfs tree.

    Processes that exit between the directory listing and the detail read are
    skipped. Malformed records keep the process with zeroed counters. Only a
    procfs that cannot be opened at all raises CounterSourceUnavailable.
    """

    def __init__(
        self,
        root: Path | str = "/proc",
        page_size: int | None = None,
        clock_ticks: int | None = None,
    ) -> None:
        """
        Initialize the counter source.

        Args:
            root: Mount point of procfs. Tests point this at a fake tree.
            page_size: Page size in bytes. Defaults to the host's.
            clock_ticks: Scheduler ticks per second. Defaults to the host's.
        """
        self._root = Path(root)
        if page_size is None:
            page_size = os.sysconf("SC_PAGE_SIZE")
        if clock_ticks is None:
            clock_ticks = os.sysconf("SC_CLK_TCK")
        self._page_size_kb = max(1, page_size // 1024)
        self._clock_ticks = max(1, clock_ticks)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def page_size_kb(self) -> int:
        """Page size in kilobytes (at least 1)."""
        return self._page_size_kb

    @property
    def clock_ticks(self) -> int:
        """Scheduler ticks per second."""
        return self._clock_ticks

    def sample_system(self) -> SystemSample:
        """Take one system-wide snapshot."""
        try:
            with open(self._root / "stat") as f:
                total_ticks = parse_total_ticks(f.readline())
            with open(self._root / "meminfo") as f:
                memory = parse_meminfo(f)
        except OSError as exc:
            raise CounterSourceUnavailable(f"cannot read system counters under {self._root}: {exc}") from exc

        return SystemSample(
            total_ticks=total_ticks,
            total_memory_kb=memory["total"],
            free_memory_kb=memory["free"],
            available_memory_kb=memory["available"],
            cpu_count=self._count_cpus(),
        )

    def sample_processes(self) -> dict[int, ProcessSample]:
        """Take one snapshot of every readable process, keyed by pid."""
        try:
            entries = [entry.name for entry in os.scandir(self._root) if entry.name.isdigit()]
        except OSError as exc:
            raise CounterSourceUnavailable(f"cannot list processes under {self._root}: {exc}") from exc

        processes: dict[int, ProcessSample] = {}
        for name in entries:
            sample = self._read_process(int(name))
            if sample is not None:
                processes[sample.pid] = sample
        return processes

    def _count_cpus(self) -> int:
        try:
            with open(self._root / "cpuinfo") as f:
                count = sum(1 for line in f if line.startswith("processor"))
        except OSError:
            logger.debug("cpuinfo unreadable, assuming one CPU")
            count = 0
        return max(1, count)

    def _read_process(self, pid: int) -> ProcessSample | None:
        """Read one process, or None if it vanished before it could be read."""
        proc_dir = self._root / str(pid)
        try:
            with open(proc_dir / "stat", errors="replace") as f:
                line = f.readline()
        except OSError:
            # Exited between listing and reading
            logger.debug("skipping pid %d: stat unreadable", pid)
            return None

        stat_name, fields = parse_stat_line(line)
        if not fields:
            logger.debug("malformed stat record for pid %d: %r", pid, line)

        return ProcessSample(
            pid=pid,
            command=self._read_command(proc_dir) or stat_name,
            cpu_time_ticks=sum(fields.get(key, 0) for key in ("utime", "stime", "cutime", "cstime")),
            resident_memory_pages=max(0, fields.get("rss", 0)),
            start_time_ticks=fields.get("starttime", 0),
            virtual_memory_bytes=fields.get("vsize", 0),
            state=fields.get("state") or "?",
        )

    def _read_command(self, proc_dir: Path) -> str:
        """Full command line, falling back to the short name in comm."""
        try:
            with open(proc_dir / "cmdline", "rb") as f:
                raw = f.read()
        except OSError:
            raw = b""
        command = raw.replace(b"\0", b" ").decode(errors="replace").strip()
        if command:
            return command

        try:
            with open(proc_dir / "comm", errors="replace") as f:
                return f.readline().strip()
        except OSError:
            return ""
