"""Configuration values for pysysmon."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class MonitorConfig:
    """Sampling cadence and engine settings."""

    refresh_interval: float = 2.0  # seconds
    min_refresh_interval: float = 0.1
    refresh_intervals: tuple[float, ...] = (1.0, 2.0, 5.0, 10.0)  # cycled by 'r'
    poll_slice: float = 0.05  # key poll granularity while waiting
    page_size: int = 20
    procfs_root: Path = field(default_factory=lambda: Path("/proc"))
    # Treat a pid whose start time changed as a new process
    match_start_time: bool = False


APP_NAME = "pysysmon"
DEFAULT_CONFIG = MonitorConfig()
