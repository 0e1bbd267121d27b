"""Tests for the pysysmon application."""

import multiprocessing
import signal
import sys
import time

import pytest

from pysysmon import app as app_module
from pysysmon.app import HeaderStats, ProcessTable, SysmonApp, format_kb, format_ticks, main, terminate_process
from pysysmon.config import MonitorConfig
from pysysmon.counters import CounterSourceUnavailable, ProcfsCounterSource
from pysysmon.engine import RefreshLoop
from pysysmon.ranking import SortMetric


def make_app(procfs, processes: int = 3, killer=None) -> SysmonApp:
    for pid in range(1, processes + 1):
        procfs.add_process(pid, f"p{pid}", cmdline=f"/bin/p{pid} --serve", utime=pid, rss=pid)
    source = ProcfsCounterSource(procfs.root, page_size=4096, clock_ticks=100)
    loop = RefreshLoop(source, MonitorConfig(procfs_root=procfs.root), killer=killer)
    return SysmonApp(engine=loop)


def sleeper(duration: float = 60.0) -> None:
    """A worker process that just sleeps."""
    time.sleep(duration)


def test_format_kb_kilobytes():
    assert format_kb(500) == "  500K"


def test_format_kb_megabytes():
    assert "M" in format_kb(5 * 1024)


def test_format_kb_gigabytes():
    assert "G" in format_kb(3 * 1024 * 1024)


def test_format_ticks():
    """12345 ticks at 100 Hz is 2 minutes 3.45 seconds."""
    assert format_ticks(12345, 100) == "2:03.45"
    assert format_ticks(0, 100) == "0:00.00"


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="requires Linux signals")
def test_terminate_process():
    """terminate_process sends SIGTERM through psutil."""
    worker = multiprocessing.Process(target=sleeper)
    worker.start()
    try:
        assert terminate_process(worker.pid) is True
        worker.join(timeout=5.0)
        assert worker.exitcode == -signal.SIGTERM
    finally:
        if worker.is_alive():
            worker.kill()
            worker.join()


def test_terminate_missing_process():
    """A pid that is already gone is reported, not raised."""
    worker = multiprocessing.Process(target=sleeper, args=(0.0,))
    worker.start()
    worker.join()
    assert terminate_process(worker.pid) is False


@pytest.mark.asyncio
async def test_app_creation(procfs):
    """Test SysmonApp can be instantiated."""
    app = make_app(procfs)
    assert app.title == "pysysmon"
    assert app.sub_title == "Process Monitor"


@pytest.mark.asyncio
async def test_app_compose(procfs):
    """Test SysmonApp composes correctly."""
    app = make_app(procfs)
    async with app.run_test() as pilot:
        assert pilot.app.query_one("#header-stats") is not None
        assert pilot.app.query_one("#process-table") is not None


@pytest.mark.asyncio
async def test_app_renders_first_frame(procfs):
    """The first cycle fills the table and header."""
    app = make_app(procfs, processes=3)
    async with app.run_test() as pilot:
        await pilot.pause(0.2)

        process_table = pilot.app.query_one(ProcessTable)
        assert sorted(process_table._current_pids) == [1, 2, 3]

        header = pilot.app.query_one("#header-stats", HeaderStats)
        assert header._frame is app.frame
        assert app.frame.system.cpu_count == 2


@pytest.mark.asyncio
async def test_app_quit_binding(procfs):
    """Test that 'q' binding triggers quit."""
    app = make_app(procfs)
    async with app.run_test() as pilot:
        await pilot.press("q")
        assert pilot.app._exit


@pytest.mark.asyncio
async def test_app_sort_binding(procfs):
    """Test that 's' toggles between CPU and memory ranking."""
    app = make_app(procfs)
    async with app.run_test() as pilot:
        await pilot.pause(0.2)
        assert app.frame.metric is SortMetric.CPU

        await pilot.press("s")
        assert app.frame.metric is SortMetric.MEM
        # Memory ranking puts the largest resident set first
        assert pilot.app.query_one(ProcessTable)._current_pids[0] == 3

        await pilot.press("s")
        assert app.frame.metric is SortMetric.CPU


@pytest.mark.asyncio
async def test_app_scroll_bindings(procfs):
    """Arrow keys move the window through a long process list."""
    app = make_app(procfs, processes=60)
    async with app.run_test() as pilot:
        await pilot.pause(0.2)
        assert app.frame.offset == 0

        await pilot.press("down", "down")
        assert app.frame.offset == 2

        await pilot.press("up")
        assert app.frame.offset == 1
        assert app.frame.total == 60


@pytest.mark.asyncio
async def test_app_interval_binding(procfs):
    """'r' advances the refresh interval preset."""
    app = make_app(procfs)
    async with app.run_test() as pilot:
        await pilot.pause(0.2)
        await pilot.press("r")
        assert app.frame.refresh_interval == 5.0


@pytest.mark.asyncio
async def test_app_kill_binding(procfs):
    """'k' hands the selected pid to the killer."""
    killed = []
    app = make_app(procfs, killer=killed.append)
    async with app.run_test() as pilot:
        await pilot.pause(0.2)
        selected = app.frame.selected_pid

        await pilot.press("k")

        assert killed == [selected]


@pytest.mark.asyncio
async def test_app_keeps_engine_separate_from_event_loop(procfs):
    """The refresh loop survives Textual installing its asyncio loop."""
    app = make_app(procfs)
    engine = app.engine
    async with app.run_test() as pilot:
        await pilot.pause(0.2)
        assert pilot.app.engine is engine
        assert app.frame is not None


@pytest.mark.asyncio
async def test_started_engine_is_not_resampled_on_mount(procfs):
    """Mounting shows the started engine's frame; only the timer samples."""
    procfs.add_process(10, "busy", utime=50)
    source = ProcfsCounterSource(procfs.root, page_size=4096, clock_ticks=100)
    engine = RefreshLoop(source, MonitorConfig(procfs_root=procfs.root))
    engine.start()

    procfs.set_system(total_ticks=1010)
    procfs.add_process(10, "busy", utime=60)
    app = SysmonApp(engine=engine)
    async with app.run_test() as pilot:
        await pilot.pause(0.2)

        assert engine.store.system.previous is None
        assert app.frame.system.total_ticks == 1000
        assert [p.cpu_percent for p in app.frame.processes] == [0.0]


@pytest.mark.asyncio
async def test_app_ignores_unbound_command(procfs):
    """Unknown command keys leave the view untouched."""
    app = make_app(procfs)
    async with app.run_test() as pilot:
        await pilot.pause(0.2)
        before = app.frame
        app.action_command("x")
        assert app.frame is before


def test_default_app_fails_fast(monkeypatch, tmp_path):
    """The default engine reads procfs before the terminal is taken over."""
    monkeypatch.setattr(app_module, "DEFAULT_CONFIG", MonitorConfig(procfs_root=tmp_path / "missing"))
    with pytest.raises(CounterSourceUnavailable):
        SysmonApp()


def test_main_exits_when_procfs_unavailable(monkeypatch, tmp_path, capsys):
    """main() prints a one-line diagnostic and exits with status 1."""
    monkeypatch.setattr(app_module, "DEFAULT_CONFIG", MonitorConfig(procfs_root=tmp_path / "missing"))

    with pytest.raises(SystemExit) as excinfo:
        main()

    assert excinfo.value.code == 1
    err = capsys.readouterr().err
    assert err.startswith("pysysmon:")
    assert err.count("\n") == 1
