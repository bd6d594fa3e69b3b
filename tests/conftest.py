"""
Shared fixtures for the telemetry tests.
"""

import gzip
import json
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from agent_telemetry.core.periods import format_timestamp
from agent_telemetry.storage.reader import partition_name


@pytest.fixture
def telemetry_dir(tmp_path):
    """Empty telemetry directory."""
    directory = tmp_path / "telemetry"
    directory.mkdir()
    return directory


@pytest.fixture
def ago():
    """Canonical timestamp for a moment relative to now."""
    now = datetime.now(timezone.utc)

    def _ago(**delta):
        return format_timestamp(now - timedelta(**delta))

    return _ago


@pytest.fixture
def write_events(telemetry_dir):
    """Write raw records into the partitions matching their timestamps.

    Records without an id get one. Pass ``compressed=True`` to write gzip
    partitions instead of plain ones.
    """
    counter = itertools.count(1)

    def _write(records, compressed=False):
        by_date = {}
        for record in records:
            record = dict(record)
            record.setdefault("id", f"evt_test{next(counter):04d}")
            by_date.setdefault(record["timestamp"][:10], []).append(record)

        paths = []
        for date, day_records in by_date.items():
            path = telemetry_dir / partition_name(date, compressed=compressed)
            lines = "".join(json.dumps(r) + "\n" for r in day_records)
            if compressed:
                with gzip.open(path, "at", encoding="utf-8") as f:
                    f.write(lines)
            else:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(lines)
            paths.append(path)
        return paths

    return _write
