"""Resource accounting: turn two counter snapshots into utilization."""

from collections.abc import Mapping

from pysysmon.models import AccountedProcess, ProcessSample, SystemSample


def account(
    current: Mapping[int, ProcessSample],
    previous: Mapping[int, ProcessSample] | None,
    current_system: SystemSample,
    previous_system: SystemSample | None,
    *,
    page_size_kb: int,
    match_start_time: bool = False,
) -> list[AccountedProcess]:
    """
    Compute CPU and memory percentages for every process in ``current``.

    CPU percent is the process's share of the elapsed system ticks, scaled by
    the CPU count so that one saturated core reads as 100%. It is 0.0 for
    processes without a previous sample and for every process when there is
    no previous system sample or no ticks elapsed. Tick regressions clamp to
    zero. Processes that only exist in ``previous`` are dropped.

    Args:
        current: This cycle's processes keyed by pid.
        previous: Last cycle's processes, or None on the first cycle.
        current_system: This cycle's system sample.
        previous_system: Last cycle's system sample, or None on the first cycle.
        page_size_kb: Size of one resident memory page in kilobytes.
        match_start_time: Treat a pid whose start time changed as a new
            process instead of continuing the old baseline.

    Returns:
        One AccountedProcess per entry of ``current``, in its iteration order.
    """
    previous = previous or {}
    cpu_count = max(1, current_system.cpu_count)
    cpu_ceiling = 100.0 * cpu_count

    total_tick_delta = 0
    if previous_system is not None:
        total_tick_delta = max(0, current_system.total_ticks - previous_system.total_ticks)

    total_memory_kb = current_system.total_memory_kb

    accounted: list[AccountedProcess] = []
    for pid, proc in current.items():
        cpu_percent = 0.0
        before = previous.get(pid)
        if match_start_time and before is not None and before.start_time_ticks != proc.start_time_ticks:
            before = None  # pid was reused

        if before is not None and total_tick_delta > 0:
            ticks_delta = max(0, proc.cpu_time_ticks - before.cpu_time_ticks)
            cpu_percent = ticks_delta / total_tick_delta * 100.0 * cpu_count
            # cutime/cstime absorb reaped children in one step
            cpu_percent = min(cpu_percent, cpu_ceiling)

        memory_percent = 0.0
        if total_memory_kb > 0:
            resident_kb = proc.resident_memory_pages * page_size_kb
            memory_percent = min(100.0, resident_kb / total_memory_kb * 100.0)

        accounted.append(
            AccountedProcess(sample=proc, cpu_percent=cpu_percent, memory_percent=memory_percent)
        )

    return accounted
