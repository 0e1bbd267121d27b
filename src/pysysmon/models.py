"""Data models for pysysmon."""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """Immutable sample of one process's raw counters."""

    pid: int
    command: str
    cpu_time_ticks: int  # utime + stime + cutime + cstime
    resident_memory_pages: int
    start_time_ticks: int  # Since boot
    virtual_memory_bytes: int = 0
    state: str = "?"  # 'R', 'S', 'Z', 'D', etc.


@dataclass(slots=True, frozen=True)
class SystemSample:
    """Immutable sample of the system-wide counters."""

    total_ticks: int
    total_memory_kb: int
    free_memory_kb: int
    available_memory_kb: int
    cpu_count: int

    @property
    def used_memory_percent(self) -> float:
        """Share of memory not available to new allocations."""
        if self.total_memory_kb <= 0:
            return 0.0
        used = max(0, self.total_memory_kb - self.available_memory_kb)
        return used / self.total_memory_kb * 100.0


@dataclass(slots=True, frozen=True)
class SnapshotPair(Generic[T]):
    """The previous and current generation of one kind of snapshot."""

    previous: T | None = None
    current: T | None = None

    def rotate(self, new: T) -> "SnapshotPair[T]":
        """Return a pair with ``new`` as current and the old current as previous."""
        return SnapshotPair(previous=self.current, current=new)


@dataclass(slots=True, frozen=True)
class AccountedProcess:
    """A process sample with the utilization derived for one cycle."""

    sample: ProcessSample
    cpu_percent: float  # 0.0 - 100.0 * cpu_count
    memory_percent: float  # 0.0 - 100.0

    @property
    def pid(self) -> int:
        return self.sample.pid

    @property
    def command(self) -> str:
        return self.sample.command

    def resident_memory_kb(self, page_size_kb: int) -> int:
        """Resident set size in kilobytes."""
        return self.sample.resident_memory_pages * page_size_kb
