"""Shared fixtures: a fake procfs tree the counter source can read."""

from pathlib import Path

import pytest


def stat_line(
    pid: int,
    name: str,
    utime: int = 0,
    stime: int = 0,
    cutime: int = 0,
    cstime: int = 0,
    starttime: int = 0,
    vsize: int = 0,
    rss: int = 0,
    state: str = "S",
) -> str:
    """Build a /proc/<pid>/stat record with the given counters."""
    fields = [state, "1", str(pid), str(pid), "0", "-1", "4194304", "100", "0", "0", "0"]
    fields += [str(utime), str(stime), str(cutime), str(cstime)]
    fields += ["20", "0", "1", "0", str(starttime), str(vsize), str(rss)]
    fields += ["18446744073709551615", "1", "1", "0", "0", "0", "0", "0", "0", "0", "0", "0", "0", "17", "0"]
    return f"{pid} ({name}) " + " ".join(fields) + "\n"


class FakeProcfs:
    """Writes procfs-shaped files under a temporary root."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.set_system()

    def set_system(
        self,
        total_ticks: int = 1000,
        mem_total: int = 1000,
        mem_free: int = 400,
        mem_available: int = 600,
        cpus: int = 2,
    ) -> None:
        # Split the total over the usual categories
        user = total_ticks // 2
        idle = total_ticks - user
        (self.root / "stat").write_text(
            f"cpu  {user} 0 0 {idle} 0 0 0 0 0 0\ncpu0 {user} 0 0 {idle} 0 0 0 0 0 0\n"
        )
        (self.root / "meminfo").write_text(
            f"MemTotal:       {mem_total} kB\n"
            f"MemFree:        {mem_free} kB\n"
            f"MemAvailable:   {mem_available} kB\n"
            "Buffers:          1234 kB\n"
        )
        (self.root / "cpuinfo").write_text(
            "".join(f"processor\t: {i}\nmodel name\t: Fake CPU\n\n" for i in range(cpus))
        )

    def add_process(
        self,
        pid: int,
        name: str = "proc",
        cmdline: str | None = None,
        stat: str | None = None,
        **counters,
    ) -> Path:
        proc_dir = self.root / str(pid)
        proc_dir.mkdir(exist_ok=True)
        (proc_dir / "stat").write_text(stat if stat is not None else stat_line(pid, name, **counters))
        (proc_dir / "comm").write_text(f"{name}\n")
        args = cmdline.split() if cmdline else []
        (proc_dir / "cmdline").write_bytes(b"".join(arg.encode() + b"\0" for arg in args))
        return proc_dir

    def remove_process(self, pid: int) -> None:
        proc_dir = self.root / str(pid)
        for child in proc_dir.iterdir():
            child.unlink()
        proc_dir.rmdir()


@pytest.fixture
def procfs(tmp_path: Path) -> FakeProcfs:
    """A fake procfs with 2 CPUs, 1000 kB of memory and no processes."""
    return FakeProcfs(tmp_path)
