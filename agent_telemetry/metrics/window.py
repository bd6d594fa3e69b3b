"""
Resolve a metrics request into a time window and the partitions covering it.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from agent_telemetry.core.periods import MetricsPeriod, PeriodLike, coerce_period, resolve_window
from agent_telemetry.storage.reader import list_partition_files

Bound = Optional[Union[str, datetime]]


@dataclass(frozen=True)
class ScanWindow:
    period: MetricsPeriod
    since: str
    until: Optional[str]
    files: List[Path]


def scan_window(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    start: Bound = None,
    end: Bound = None,
    now: Optional[datetime] = None
) -> ScanWindow:
    """Resolve period bounds and list the partitions that may hold matches."""
    resolved = coerce_period(period)
    since, until = resolve_window(resolved, start=start, end=end, now=now)
    return ScanWindow(
        period=resolved,
        since=since,
        until=until,
        files=list_partition_files(telemetry_dir, since, until),
    )
