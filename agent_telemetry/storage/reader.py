"""
Streaming access to telemetry partition files.

Partitions are newline-delimited JSON files named ``events-YYYY-MM-DD.ndjson``
and may be gzip-compressed (``.ndjson.gz``). Files are read one line at a
time and one file at a time, so scans run in constant memory regardless of
partition size or date range.
"""

import gzip
import json
import logging
import re
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar, Union

from .errors import MalformedRecord
from .models import EventType, TelemetryEvent, event_from_record

logger = logging.getLogger(__name__)

PARTITION_PATTERN = re.compile(r"^events-(\d{4}-\d{2}-\d{2})\.ndjson(\.gz)?$")
PARTITION_PREFIX = "events-"
PARTITION_SUFFIX = ".ndjson"
COMPRESSED_SUFFIX = ".ndjson.gz"

# A damaged partition is logged and skipped so healthy partitions still answer
CORRUPTION_ERRORS = (gzip.BadGzipFile, EOFError, zlib.error)

A = TypeVar("A")
MatchHandler = Callable[[TelemetryEvent, A], None]


@dataclass(frozen=True)
class Parsed:
    """A line that decoded into a JSON object."""
    record: Dict[str, Any]


@dataclass(frozen=True)
class Skipped:
    """A line that could not be used, with the reason."""
    reason: str


ParseOutcome = Union[Parsed, Skipped]


@dataclass
class ScanStats:
    """Counters describing one scan."""
    files: int = 0
    lines: int = 0
    matched: int = 0
    skipped: int = 0


def partition_name(date: str, compressed: bool = False) -> str:
    """File name of the partition for a YYYY-MM-DD date."""
    suffix = COMPRESSED_SUFFIX if compressed else PARTITION_SUFFIX
    return f"{PARTITION_PREFIX}{date}{suffix}"


def partition_date(path: Union[str, Path]) -> Optional[str]:
    """Date embedded in a partition file name, or None for other files."""
    match = PARTITION_PATTERN.match(Path(path).name)
    return match.group(1) if match else None


def list_partition_files(
    directory: Union[str, Path],
    since: Optional[str] = None,
    until: Optional[str] = None
) -> List[Path]:
    """List partition files whose date falls within a window.

    Dates are compared as YYYY-MM-DD strings against the date part of the
    bounds, so a partition is included whenever it may hold a matching event.

    Args:
        directory: Telemetry directory
        since: Lower bound timestamp (inclusive), None for no bound
        until: Upper bound timestamp (inclusive), None for no bound

    Returns:
        Plain and compressed partition paths ordered by date
    """
    root = Path(directory)
    try:
        names = [entry.name for entry in root.iterdir()]
    except FileNotFoundError:
        return []

    since_date = since[:10] if since else None
    until_date = until[:10] if until else None

    selected = []
    for name in names:
        date = partition_date(name)
        if date is None:
            continue
        if since_date and date < since_date:
            continue
        if until_date and date > until_date:
            continue
        selected.append((date, name))

    return [root / name for _, name in sorted(selected)]


def open_line_stream(path: Union[str, Path]) -> Iterator[bytes]:
    """Yield the raw lines of a partition file one at a time.

    Gzip partitions are decompressed on the fly. Lines are left undecoded so
    that one badly encoded line is skipped on its own by parse_line. The file
    handle is closed once the generator is exhausted or closed.
    """
    open_fn = gzip.open if str(path).endswith(".gz") else open
    with open_fn(path, "rb") as f:
        for line in f:
            yield line.rstrip(b"\r\n")


def parse_line(line: Union[str, bytes]) -> ParseOutcome:
    """Decode one NDJSON line.

    Args:
        line: The line as read from disk (UTF-8 bytes) or already decoded

    Returns:
        Parsed with the decoded object, or Skipped with the reason
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError:
            return Skipped("invalid UTF-8")
    if not line.strip():
        return Skipped("blank line")
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        return Skipped(f"invalid JSON: {e.msg}")
    if not isinstance(record, dict):
        return Skipped("record is not a JSON object")
    return Parsed(record)


def scan(
    files: Iterable[Union[str, Path]],
    types: Iterable[Union[EventType, str]],
    since: Optional[str],
    project: Optional[str],
    accumulator: A,
    on_match: MatchHandler,
    until: Optional[str] = None
) -> ScanStats:
    """Stream matching events from partition files into an accumulator.

    Type, time and project filters run against the raw record before it is
    turned into an event, so non-matching lines cost one JSON decode.
    Malformed lines are skipped and counted; a file that disappears between
    listing and reading is treated as empty.

    Args:
        files: Partition paths to read, in order
        types: Event types to keep
        since: Keep events with timestamp >= since (None keeps all)
        project: Keep only events for this project (None keeps all)
        accumulator: Mutable per-call state handed to on_match
        on_match: Called as on_match(event, accumulator) for every match
        until: Keep events with timestamp <= until (None keeps all)

    Returns:
        ScanStats for the scan
    """
    allowed = {EventType(t).value for t in types}
    stats = ScanStats()

    for path in files:
        file_skipped = 0
        try:
            for line in open_line_stream(path):
                stats.lines += 1
                outcome = parse_line(line)
                if isinstance(outcome, Skipped):
                    if outcome.reason != "blank line":
                        file_skipped += 1
                        logger.debug("Skipping line in %s: %s", path, outcome.reason)
                    continue

                record = outcome.record
                event_type = record.get("type")
                if not isinstance(event_type, str):
                    file_skipped += 1
                    logger.debug("Skipping record in %s: event type is not a string", path)
                    continue
                if event_type not in allowed:
                    continue
                timestamp = record.get("timestamp")
                if not isinstance(timestamp, str):
                    file_skipped += 1
                    continue
                if since and timestamp < since:
                    continue
                if until and timestamp > until:
                    continue
                if project and record.get("project") != project:
                    continue

                try:
                    event = event_from_record(record)
                except MalformedRecord as e:
                    file_skipped += 1
                    logger.debug("Skipping record in %s: %s", path, e)
                    continue

                stats.matched += 1
                on_match(event, accumulator)
        except FileNotFoundError:
            continue
        except CORRUPTION_ERRORS as e:
            logger.error("Unreadable partition %s: %s", path, e)
            continue
        finally:
            stats.files += 1
            stats.skipped += file_skipped

        if file_skipped:
            logger.warning("Skipped %d malformed line(s) in %s", file_skipped, path)

    return stats
