"""Ranking and pagination of accounted processes."""

from collections.abc import Sequence
from enum import Enum
from typing import TypeVar

from pysysmon.models import AccountedProcess

T = TypeVar("T")


class SortMetric(Enum):
    """Metrics the process table can be ranked by."""

    CPU = "cpu"
    MEM = "mem"

    def toggled(self) -> "SortMetric":
        """Return the other metric."""
        return SortMetric.MEM if self is SortMetric.CPU else SortMetric.CPU


def rank(processes: Sequence[AccountedProcess], metric: SortMetric) -> list[AccountedProcess]:
    """Order processes descending by ``metric``. Ties keep their input order."""
    key_func = {
        SortMetric.CPU: lambda p: p.cpu_percent,
        SortMetric.MEM: lambda p: p.memory_percent,
    }
    return sorted(processes, key=key_func[metric], reverse=True)


class Pager:
    """A scrollable window of ``page_size`` rows into a ranked sequence."""

    def __init__(self, page_size: int = 20) -> None:
        self._page_size = max(1, page_size)
        self._offset = 0

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def page_size(self) -> int:
        return self._page_size

    @page_size.setter
    def page_size(self, value: int) -> None:
        self._page_size = max(1, value)

    def clamp(self, count: int) -> int:
        """Clamp the offset to ``[0, max(0, count - page_size)]`` and return it."""
        last_start = max(0, count - self._page_size)
        self._offset = min(max(0, self._offset), last_start)
        return self._offset

    def scroll(self, delta: int, count: int) -> int:
        """Move the offset by ``delta`` rows within bounds and return it."""
        self._offset += delta
        return self.clamp(count)

    def window(self, items: Sequence[T]) -> list[T]:
        """Return the visible slice of ``items``."""
        start = self.clamp(len(items))
        return list(items[start : start + self._page_size])
